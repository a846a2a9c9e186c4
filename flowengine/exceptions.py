"""Flow engine exception hierarchy."""

from __future__ import annotations


class FlowEngineError(Exception):
    """Base exception for all flow engine errors."""


class FlowNotFoundError(FlowEngineError):
    """Raised when a flow file cannot be found."""

    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")


class FlowValidationError(FlowEngineError):
    """Raised when a flow definition fails validation."""

    def __init__(self, flow_id: str, detail: str) -> None:
        self.flow_id = flow_id
        self.detail = detail
        super().__init__(f"Flow validation error in '{flow_id}': {detail}")


class ConfigurationError(FlowEngineError):
    """Raised when a flow cannot run because its setup is incomplete."""


class MissingParametersError(FlowEngineError):
    """Raised when required flow parameters have no value."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(f"Missing required parameters: {', '.join(names)}")


class TemplateResolutionError(FlowEngineError):
    """Raised when a template reference cannot be resolved."""

    def __init__(self, expression: str, detail: str) -> None:
        self.expression = expression
        self.detail = detail
        super().__init__(f"Cannot resolve '{expression}': {detail}")


class TransformationError(FlowEngineError):
    """Raised when a transformation expression fails to evaluate."""

    def __init__(self, expression: str, detail: str) -> None:
        self.expression = expression
        self.detail = detail
        super().__init__(f"Transformation '{expression}' failed: {detail}")


class AssertionConfigError(FlowEngineError):
    """Raised when an assertion is misconfigured."""

    def __init__(self, assertion_id: str, detail: str) -> None:
        self.assertion_id = assertion_id
        self.detail = detail
        super().__init__(detail)


class ParameterTypeError(FlowEngineError):
    """Raised when a value cannot be converted to its declared type."""

    def __init__(self, value: object, declared_type: str) -> None:
        self.value = value
        self.declared_type = declared_type
        super().__init__(f"Cannot convert {value!r} to {declared_type}")


class EnvironmentResolutionError(FlowEngineError):
    """Raised when environment variables cannot be resolved."""

    def __init__(self, code: str, detail: str) -> None:
        self.code = code
        self.detail = detail
        super().__init__(detail)


class RequestPreparationError(FlowEngineError):
    """Raised when an endpoint request cannot be built."""


class TransportError(FlowEngineError):
    """Raised when an HTTP request cannot be completed."""


class RequestTimeoutError(TransportError):
    """Raised when an HTTP request exceeds its timeout."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Request timed out after {timeout_ms}ms")


class FlowExecutionError(FlowEngineError):
    """Raised when a flow run ends in failure."""

    def __init__(self, flow_id: str, detail: str) -> None:
        self.flow_id = flow_id
        self.detail = detail
        super().__init__(f"Flow '{flow_id}' failed: {detail}")
