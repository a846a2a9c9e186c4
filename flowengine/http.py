"""HTTP transports: direct httpx calls or calls relayed through the proxy."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from flowengine.cookies import CookieMode
from flowengine.exceptions import RequestTimeoutError, TransportError
from flowengine.logger import get_logger
from flowengine.models import Cookie

log = get_logger(__name__)


@dataclass
class OutgoingRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    cookies: list[Cookie] = field(default_factory=list)


@dataclass
class TransportResponse:
    status: int
    status_text: str
    headers: dict[str, str]
    text: str
    cookies: list[Cookie] = field(default_factory=list)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(k.lower() == name for k in headers)


def encode_body(body: Any, headers: dict[str, str]) -> str | None:
    """Serialize a non-string body as JSON, adding a JSON content type."""
    if body is None or isinstance(body, str):
        return body
    if not _has_header(headers, "content-type"):
        headers["Content-Type"] = "application/json"
    return json.dumps(body)


class HttpTransport(ABC):
    """Sends one request and returns the raw response."""

    mode: CookieMode = "native"

    @abstractmethod
    async def send(
        self, request: OutgoingRequest, timeout_ms: int
    ) -> TransportResponse:
        """Send the request, raising TransportError on network failure."""


class DirectTransport(HttpTransport):
    """Calls the target directly; the client's cookie jar replays cookies."""

    mode: CookieMode = "native"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def send(
        self, request: OutgoingRequest, timeout_ms: int
    ) -> TransportResponse:
        headers = dict(request.headers)
        content = encode_body(request.body, headers)
        try:
            response = await self.client.request(
                request.method,
                request.url,
                headers=headers,
                content=content,
                timeout=timeout_ms / 1000,
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(timeout_ms) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}") from exc

        host = urlsplit(request.url).hostname or ""
        cookies = [
            Cookie(
                name=c.name,
                value=c.value or "",
                domain=c.domain or host,
                path=c.path or "/",
                secure=bool(c.secure),
            )
            for c in response.cookies.jar
        ]
        return TransportResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
            text=response.text,
            cookies=cookies,
        )


class ProxyTransport(HttpTransport):
    """Relays requests through the forwarding proxy with explicit cookies."""

    mode: CookieMode = "explicit"

    def __init__(self, client: httpx.AsyncClient, proxy_url: str) -> None:
        self.client = client
        self.proxy_url = proxy_url

    async def send(
        self, request: OutgoingRequest, timeout_ms: int
    ) -> TransportResponse:
        headers = dict(request.headers)
        body = encode_body(request.body, headers)
        payload = {
            "url": request.url,
            "method": request.method,
            "headers": headers,
            "body": body,
            "cookies": [c.model_dump() for c in request.cookies],
            "timeout_ms": timeout_ms,
        }
        try:
            response = await self.client.post(
                self.proxy_url, json=payload, timeout=timeout_ms / 1000 + 5
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(timeout_ms) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Proxy request failed: {exc}") from exc

        if response.status_code == 504:
            raise RequestTimeoutError(timeout_ms)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise TransportError(f"Proxy error {response.status_code}: {detail}")

        data = response.json()
        raw_body = data.get("body")
        if raw_body is None:
            text = ""
        elif isinstance(raw_body, str):
            text = raw_body
        else:
            text = json.dumps(raw_body)
        host = urlsplit(request.url).hostname or ""
        cookies = []
        for item in data.get("cookies") or []:
            cookie = Cookie.model_validate(item)
            if not cookie.domain:
                cookie.domain = host
            cookies.append(cookie)
        log.debug("proxy_response", url=request.url, status=data.get("status"))
        return TransportResponse(
            status=int(data.get("status", 0)),
            status_text=data.get("status_text", ""),
            headers={k.lower(): v for k, v in (data.get("headers") or {}).items()},
            text=text,
            cookies=cookies,
        )
