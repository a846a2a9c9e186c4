"""Executes a single endpoint call of a flow step."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlencode

from flowengine.assertions import run_assertions
from flowengine.cookies import CookieJar
from flowengine.exceptions import (
    ConfigurationError,
    RequestPreparationError,
    TemplateResolutionError,
    TransportError,
)
from flowengine.http import HttpTransport, OutgoingRequest, TransportResponse
from flowengine.logger import get_logger
from flowengine.models import (
    ApiHostInfo,
    CapturedRequest,
    CapturedResponse,
    EndpointDefinition,
    EndpointOutcome,
    EndpointParameter,
    ExecutionPreferences,
    StepEndpoint,
)
from flowengine.runlog import RunLog
from flowengine.state import ExecutionStateStore, endpoint_key
from flowengine.template.engine import (
    TemplateContext,
    build_template_context,
    resolve_object,
    resolve_template,
    stringify,
)
from flowengine.template.functions import FUNCTION_REGISTRY, TemplateFunction
from flowengine.transform import apply_transformations

log = get_logger(__name__)

UNPARSEABLE_BODY = "Unable to parse response data"

_DELIMITERS = {
    "csv": ",",
    "form": ",",
    "ssv": " ",
    "spaceDelimited": " ",
    "tsv": "\t",
    "pipes": "|",
    "pipeDelimited": "|",
}


@dataclass
class ExecutionContext:
    """Data accumulated during a run and visible to later endpoints."""

    parameters: dict[str, Any] = field(default_factory=dict)
    environment: dict[str, Any] = field(default_factory=dict)
    responses: dict[str, Any] = field(default_factory=dict)
    transformations: dict[str, dict[str, Any]] = field(default_factory=dict)
    host_overrides: dict[str, str] = field(default_factory=dict)
    functions: dict[str, TemplateFunction] = field(
        default_factory=lambda: dict(FUNCTION_REGISTRY)
    )

    def template_context(self) -> TemplateContext:
        return build_template_context(
            responses=self.responses,
            transformations=self.transformations,
            parameters=self.parameters,
            environment=self.environment,
            functions=self.functions,
        )


def serialize_query_param(
    name: str, value: Any, definition: EndpointParameter | None
) -> list[tuple[str, str]]:
    """Query pairs for one parameter, honouring array serialisation styles."""
    if not isinstance(value, list):
        if definition and definition.is_array and isinstance(value, str) and "," in value:
            value = [part.strip() for part in value.split(",")]
        else:
            return [(name, stringify(value))]
    items = [stringify(v) for v in value]
    fmt = None
    explode = True
    if definition:
        fmt = definition.collection_format or definition.style
        if definition.explode is not None:
            explode = definition.explode
    if fmt == "multi" or (fmt in (None, "form") and explode):
        return [(name, item) for item in items]
    return [(name, _DELIMITERS.get(fmt or "csv", ",").join(items))]


def parse_response_body(response: TransportResponse) -> Any:
    """Decode a body according to its content type."""
    content_type = response.content_type.lower()
    text = response.text
    is_json = "application/json" in content_type or "+json" in content_type
    if not text.strip():
        return None if is_json else text
    if is_json:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return UNPARSEABLE_BODY
    if content_type.startswith("text/") or "xml" in content_type:
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _looks_like_json(text: str) -> bool:
    stripped = text.strip()
    return stripped.startswith("{") or stripped.startswith("[")


class EndpointExecutor:
    """Builds, sends and evaluates one endpoint call.

    Failures never propagate: they end up as a ``failed`` state record.
    """

    def __init__(
        self,
        transport: HttpTransport,
        cookie_jar: CookieJar,
        state: ExecutionStateStore,
        run_log: RunLog,
        preferences: ExecutionPreferences,
    ) -> None:
        self.transport = transport
        self.cookie_jar = cookie_jar
        self.state = state
        self.run_log = run_log
        self.preferences = preferences

    async def execute(
        self,
        step_id: str,
        index: int,
        step_endpoint: StepEndpoint,
        definition: EndpointDefinition | None,
        api_hosts: dict[str, ApiHostInfo],
        context: ExecutionContext,
    ) -> EndpointOutcome:
        key = endpoint_key(step_id, index)
        self.state.begin(key)
        try:
            request = self.build_request(
                key, step_endpoint, definition, api_hosts, context
            )
        except (ConfigurationError, RequestPreparationError) as exc:
            return self._fail(key, str(exc))

        captured = CapturedRequest(
            url=request.url,
            method=request.method,
            headers=request.headers,
            body=request.body,
            cookies=request.cookies,
        )
        self.state.update(key, request=captured)
        self.run_log.info(f"Executing {request.method} {request.url}", {"endpoint": key})

        started = time.perf_counter()
        try:
            raw = await self.transport.send(request, self.preferences.timeout)
        except TransportError as exc:
            return self._fail(key, str(exc), timing=_elapsed_ms(started))
        except Exception as exc:
            log.exception("endpoint_unexpected_error", endpoint=key)
            return self._fail(key, f"Unexpected error: {exc}", timing=_elapsed_ms(started))
        timing = _elapsed_ms(started)

        body = parse_response_body(raw)
        self.cookie_jar.record(key, raw.cookies)
        context.responses[key] = body
        response = CapturedResponse(
            status=raw.status,
            status_text=raw.status_text,
            headers=raw.headers,
            body=body,
            cookies=raw.cookies,
        )

        transformed = apply_transformations(
            body,
            step_endpoint.transformations,
            context.template_context(),
            self.run_log,
        )
        context.transformations[key] = transformed

        assertions = None
        if any(a.enabled for a in step_endpoint.assertions):
            assertions = run_assertions(
                step_endpoint.assertions,
                response,
                body,
                transformed,
                timing,
                context.template_context(),
            )

        error: str | None = None
        if assertions and not assertions.passed:
            error = assertions.failure_message
        elif not step_endpoint.skip_default_status_check and not 200 <= raw.status < 300:
            error = f"Request failed with status {raw.status}: {raw.status_text}"

        self.state.update(
            key,
            status="failed" if error else "completed",
            response=response,
            timing=timing,
            transformations=transformed,
            assertions=assertions,
            error=error,
        )
        if error:
            self.run_log.error(f"Endpoint {key} failed: {error}", {"status": raw.status})
        else:
            self.run_log.info(
                f"Endpoint {key} completed with status {raw.status} in {timing}ms"
            )
        return EndpointOutcome(key=key, success=error is None, error=error)

    def build_request(
        self,
        key: str,
        step_endpoint: StepEndpoint,
        definition: EndpointDefinition | None,
        api_hosts: dict[str, ApiHostInfo],
        context: ExecutionContext,
    ) -> OutgoingRequest:
        """Resolve host, path, query, headers, body and cookies."""
        if definition is None:
            raise ConfigurationError(
                f"Endpoint definition '{step_endpoint.endpoint_id}' not found"
            )
        api_id = step_endpoint.api_id
        host = context.host_overrides.get(api_id)
        if not host:
            info = api_hosts.get(api_id)
            host = info.url.strip() if info else ""
        if not host:
            raise ConfigurationError(f"No API host configured for API '{api_id}'")

        template_context = context.template_context()

        path = definition.path
        for name, value in step_endpoint.path_params.items():
            resolved = self._resolve_leaf(value, template_context, f"path parameter '{name}'")
            path = path.replace(f"{{{name}}}", quote(stringify(resolved), safe="!~*'()"))
        if "{" in path and "}" in path:
            self.run_log.warning(f"Unresolved path placeholders in {path}", {"endpoint": key})
        url = host.rstrip("/") + "/" + path.lstrip("/")

        pairs: list[tuple[str, str]] = []
        for name, value in step_endpoint.query_params.items():
            resolved = self._resolve_leaf(value, template_context, f"query parameter '{name}'")
            if resolved is None or resolved == "":
                continue
            pairs.extend(
                serialize_query_param(name, resolved, definition.parameter(name))
            )
        if pairs:
            url += ("&" if "?" in url else "?") + urlencode(pairs)

        headers: dict[str, str] = {}
        for header in step_endpoint.headers:
            if not header.enabled or not header.name.strip():
                continue
            resolved = self._resolve_leaf(
                header.value, template_context, f"header '{header.name}'"
            )
            headers[header.name.strip()] = stringify(resolved)

        body = self._resolve_body(step_endpoint.body, template_context)

        return OutgoingRequest(
            method=definition.method.upper(),
            url=url,
            headers=headers,
            body=body,
            cookies=self.cookie_jar.cookies_for(url),
        )

    def _resolve_leaf(self, value: Any, context: TemplateContext, what: str) -> Any:
        if isinstance(value, (dict, list)):
            return resolve_object(value, context, self._on_template_error(what))
        try:
            return resolve_template(value, context)
        except TemplateResolutionError as exc:
            self.run_log.error(f"Failed to resolve {what}: {exc}")
            return value

    def _on_template_error(self, what: str) -> Any:
        def report(text: str, exc: TemplateResolutionError) -> None:
            self.run_log.error(f"Failed to resolve {what} value {text!r}: {exc}")

        return report

    def _resolve_body(self, body: Any, context: TemplateContext) -> Any:
        if body is None:
            return None
        if isinstance(body, str):
            resolved = self._resolve_leaf(body, context, "request body")
            if isinstance(resolved, str) and _looks_like_json(body):
                try:
                    return json.loads(resolved)
                except json.JSONDecodeError as exc:
                    raise RequestPreparationError(
                        f"Invalid JSON in request body: {exc}"
                    ) from exc
            return resolved
        return resolve_object(body, context, self._on_template_error("request body"))

    def _fail(self, key: str, error: str, timing: int = 0) -> EndpointOutcome:
        self.state.update(key, status="failed", error=error, timing=timing)
        self.run_log.error(f"Endpoint {key} failed: {error}")
        return EndpointOutcome(key=key, success=False, error=error)


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))
