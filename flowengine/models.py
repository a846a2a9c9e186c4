"""All Pydantic models for the flow engine."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ParameterType = Literal["string", "number", "boolean", "object", "array", "null"]
EndpointStatus = Literal["idle", "running", "completed", "failed"]
LogLevel = Literal["info", "debug", "warning", "error"]


class _FlowModel(BaseModel):
    """Accepts both snake_case names and the camelCase keys of flow JSON."""

    model_config = ConfigDict(populate_by_name=True)


def _as_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# --- Environments ---


class VariableDefinition(_FlowModel):
    """Declared type and default of an environment variable."""

    type: str = "string"
    required: bool = False
    default_value: Any = Field(default=None, alias="defaultValue")
    description: str | None = None


class SubEnvironment(_FlowModel):
    """Variable values and host overrides for one sub-environment."""

    variables: dict[str, Any] = Field(default_factory=dict)
    api_hosts: dict[str, str] = Field(default_factory=dict)

    @field_validator("api_hosts", mode="before")
    @classmethod
    def _normalize_hosts(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): v for k, v in value.items()}
        return value


class EnvironmentConfig(_FlowModel):
    environments: dict[str, SubEnvironment] = Field(default_factory=dict)
    variable_definitions: dict[str, VariableDefinition] = Field(
        default_factory=dict
    )


class Environment(_FlowModel):
    """A named environment with its sub-environments."""

    id: str | None = None
    name: str
    config: EnvironmentConfig = Field(default_factory=EnvironmentConfig)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _as_str(value)


# --- Flow definition ---


class ApiHostInfo(_FlowModel):
    url: str = ""
    name: str | None = None
    description: str | None = None


class EnvironmentBinding(_FlowModel):
    """Environment selected for a flow run."""

    environment_id: str | None = Field(default=None, alias="environmentId")
    sub_environment: str | None = Field(default=None, alias="subEnvironment")

    @field_validator("environment_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _as_str(value)


class EnvironmentMapping(_FlowModel):
    """Maps flow parameters onto environment variables."""

    environment_id: str | None = Field(default=None, alias="environmentId")
    environment_name: str | None = Field(default=None, alias="environmentName")
    parameter_mappings: dict[str, str] = Field(
        default_factory=dict, alias="parameterMappings"
    )

    @field_validator("environment_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _as_str(value)


class FlowSettings(_FlowModel):
    api_hosts: dict[str, ApiHostInfo] = Field(default_factory=dict)
    environment: EnvironmentBinding | None = None
    linked_environment: EnvironmentMapping | None = Field(
        default=None, alias="linkedEnvironment"
    )

    @field_validator("api_hosts", mode="before")
    @classmethod
    def _normalize_hosts(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                str(k): {"url": v} if isinstance(v, str) else v
                for k, v in value.items()
            }
        return value


class EndpointParameter(_FlowModel):
    """Parameter metadata from the endpoint catalogue."""

    name: str
    location: str | None = Field(default=None, alias="in")
    required: bool = False
    type: str | None = None
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")
    collection_format: str | None = Field(default=None, alias="collectionFormat")
    style: str | None = None
    explode: bool | None = None

    @property
    def is_array(self) -> bool:
        if self.type == "array":
            return True
        return bool(self.schema_ and self.schema_.get("type") == "array")


class EndpointDefinition(_FlowModel):
    """An HTTP endpoint: method and path template."""

    id: str
    method: str = "GET"
    path: str
    api_id: str | None = None
    summary: str | None = None
    parameters: list[EndpointParameter] = Field(default_factory=list)

    @field_validator("id", "api_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _as_str(value)

    def parameter(self, name: str) -> EndpointParameter | None:
        return next((p for p in self.parameters if p.name == name), None)


class HeaderEntry(_FlowModel):
    name: str
    value: str = ""
    enabled: bool = True


class Transformation(_FlowModel):
    """Derives a named value from a response body."""

    alias: str
    expression: str = ""


class Assertion(_FlowModel):
    """A check against a response or derived data."""

    id: str
    data_source: Literal["response", "transformed_data"] = "response"
    assertion_type: Literal[
        "status_code", "response_time", "header", "json_body"
    ] = "status_code"
    data_id: str | None = None
    operator: str = "equals"
    expected_value: Any = None
    enabled: bool = True
    is_template_expression: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _as_str(value)


class StepEndpoint(_FlowModel):
    """One endpoint call inside a step."""

    endpoint_id: str
    api_id: str
    path_params: dict[str, Any] = Field(default_factory=dict, alias="pathParams")
    query_params: dict[str, Any] = Field(default_factory=dict, alias="queryParams")
    headers: list[HeaderEntry] = Field(default_factory=list)
    body: Any = None
    transformations: list[Transformation] = Field(default_factory=list)
    assertions: list[Assertion] = Field(default_factory=list)
    skip_default_status_check: bool = Field(
        default=False, alias="skipDefaultStatusCheck"
    )

    @field_validator("endpoint_id", "api_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        return _as_str(value)


class FlowStep(_FlowModel):
    """A group of endpoint calls executed together."""

    step_id: str
    label: str | None = None
    endpoints: list[StepEndpoint] = Field(default_factory=list)
    clear_cookies_before_execution: bool = Field(
        default=False, alias="clearCookiesBeforeExecution"
    )


class FlowParameter(_FlowModel):
    """Parameter definition for a flow."""

    name: str
    type: ParameterType = "string"
    default_value: Any = Field(default=None, alias="defaultValue")
    value: Any = None
    required: bool = False
    description: str | None = None


class FlowOutput(_FlowModel):
    """Named value produced once a flow completes."""

    name: str
    value: Any = None
    is_template: bool = Field(default=False, alias="isTemplate")
    type: ParameterType | None = None
    cast_to_type: bool = Field(default=False, alias="castToType")


class FlowDefinition(_FlowModel):
    """Complete flow definition, loaded from a .flow.json file."""

    flow_id: str = Field(default="flow", alias="flowId")
    name: str | None = None
    description: str | None = None
    steps: list[FlowStep] | None = Field(default_factory=list)
    parameters: list[FlowParameter] = Field(default_factory=list)
    outputs: list[FlowOutput] = Field(default_factory=list)
    endpoints: list[EndpointDefinition] = Field(default_factory=list)
    settings: FlowSettings = Field(default_factory=FlowSettings)

    def endpoint(self, endpoint_id: str) -> EndpointDefinition | None:
        return next((e for e in self.endpoints if e.id == endpoint_id), None)


class ExecutionPreferences(_FlowModel):
    """User-selected run options."""

    parallel_execution: bool = Field(default=False, alias="parallelExecution")
    stop_on_error: bool = Field(default=True, alias="stopOnError")
    server_cookie_handling: bool = Field(
        default=False, alias="serverCookieHandling"
    )
    retry_count: int = Field(default=0, ge=0, le=5, alias="retryCount")
    timeout: int = Field(default=30000, ge=1000, le=60000)
    scope_cookies_by_domain: bool = Field(
        default=False, alias="scopeCookiesByDomain"
    )


# --- Flow sequences ---

MappingSource = Literal[
    "environment_variable",
    "previous_output",
    "previous_response",
    "static_value",
    "function",
]


class ParameterMapping(_FlowModel):
    """Where a sequence takes the value of one flow parameter from.

    ``source_value`` is an environment variable name, an output field, a
    JSONPath into an earlier flow's stored responses, a literal, or a
    function call such as ``randomString(8)``, depending on ``source_type``.
    """

    flow_parameter_name: str = Field(alias="flowParameterName")
    source_type: MappingSource = Field(alias="sourceType")
    source_value: str = Field(default="", alias="sourceValue")
    data_type: Literal["string", "number", "boolean"] | None = Field(
        default=None, alias="dataType"
    )
    source_flow_step: int | None = Field(default=None, alias="sourceFlowStep")
    source_output_field: str | None = Field(
        default=None, alias="sourceOutputField"
    )

    @field_validator("source_value", mode="before")
    @classmethod
    def _normalize_value(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return str(value).lower()
        return _as_str(value)


class SequenceStep(_FlowModel):
    id: str | None = None
    flow_id: str = Field(alias="flowId")
    step_order: int = Field(alias="stepOrder")
    parameter_mappings: list[ParameterMapping] = Field(
        default_factory=list, alias="parameterMappings"
    )

    @field_validator("flow_id", mode="before")
    @classmethod
    def _normalize_flow_id(cls, value: Any) -> Any:
        return _as_str(value)


class FlowSequence(_FlowModel):
    """An ordered chain of flows sharing outputs and responses."""

    sequence_id: str = Field(default="sequence", alias="sequenceId")
    name: str | None = None
    sub_environment: str | None = Field(default=None, alias="subEnvironment")
    steps: list[SequenceStep] = Field(default_factory=list)

    def ordered_steps(self) -> list[SequenceStep]:
        return sorted(self.steps, key=lambda s: s.step_order)


# --- Runtime state ---


class Cookie(BaseModel):
    name: str
    value: str = ""
    domain: str = ""
    path: str = "/"
    expires: str | None = None
    max_age: int | None = None
    secure: bool = False
    http_only: bool = False
    same_site: str | None = None


class CapturedRequest(BaseModel):
    """Request exactly as it was sent."""

    url: str
    method: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    cookies: list[Cookie] = Field(default_factory=list)


class CapturedResponse(BaseModel):
    status: int
    status_text: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    cookies: list[Cookie] = Field(default_factory=list)


class AssertionResult(BaseModel):
    assertion_id: str
    passed: bool
    actual_value: Any = None
    expected_value: Any = None
    original_expected_value: Any = None
    message: str = ""
    error: str | None = None


class AssertionOutcome(BaseModel):
    passed: bool = True
    results: list[AssertionResult] = Field(default_factory=list)
    failure_message: str | None = None


class EndpointExecutionState(BaseModel):
    """State of one endpoint call within a run."""

    model_config = ConfigDict(frozen=True)

    status: EndpointStatus = "idle"
    request: CapturedRequest | None = None
    response: CapturedResponse | None = None
    timing: int = 0
    transformations: dict[str, Any] = Field(default_factory=dict)
    assertions: AssertionOutcome | None = None
    error: str | None = None


class ExecutionStateSnapshot(BaseModel):
    """Copy of the whole run state handed to observers."""

    endpoints: dict[str, EndpointExecutionState] = Field(default_factory=dict)
    progress: int = 0
    current_step: int | None = None


class LogEntry(BaseModel):
    level: LogLevel
    message: str
    details: Any = None
    timestamp: datetime


class EndpointOutcome(BaseModel):
    key: str
    success: bool
    error: str | None = None


class StepOutcome(BaseModel):
    step_id: str
    step_index: int
    success: bool
    error: str | None = None
    endpoints: list[EndpointOutcome] = Field(default_factory=list)


class ExecutionOutcome(BaseModel):
    """Result of a complete flow run."""

    flow_id: str
    success: bool
    status: Literal[
        "success",
        "failed",
        "stopped",
        "awaiting_parameters",
        "configuration_error",
    ]
    error: str | None = None
    execution_state: ExecutionStateSnapshot = Field(
        default_factory=ExecutionStateSnapshot
    )
    stored_responses: dict[str, Any] = Field(default_factory=dict)
    parameter_values: dict[str, Any] = Field(default_factory=dict)
    flow_outputs: dict[str, Any] = Field(default_factory=dict)
    output_errors: dict[str, str] = Field(default_factory=dict)
    missing_parameters: list[FlowParameter] = Field(default_factory=list)
    failed_endpoints: list[str] = Field(default_factory=list)
    progress: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: float = 0
    apply_transformations: Callable[..., dict[str, Any]] | None = Field(
        default=None, exclude=True, repr=False
    )


class SequenceFlowResult(BaseModel):
    """Result of one flow inside a sequence run."""

    flow_id: str
    flow_name: str | None = None
    step_order: int
    success: bool
    status: str
    error: str | None = None
    outputs: dict[str, Any] = Field(default_factory=dict)
    responses: dict[str, Any] = Field(default_factory=dict)
    parameter_values: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float = 0


class SequenceOutcome(BaseModel):
    sequence_id: str
    success: bool
    status: Literal["success", "failed", "stopped"]
    error: str | None = None
    completed_flows: int = 0
    total_flows: int = 0
    progress: int = 0
    flow_results: list[SequenceFlowResult] = Field(default_factory=list)
    sequence_outputs: dict[str, dict[str, Any]] = Field(default_factory=dict)
    duration_ms: float = 0
