"""Flow Engine — multi-step API test flow execution."""

from flowengine.engine import FlowEngine
from flowengine.exceptions import (
    ConfigurationError,
    FlowEngineError,
    FlowExecutionError,
    FlowNotFoundError,
    FlowValidationError,
    MissingParametersError,
    TemplateResolutionError,
    TransformationError,
)
from flowengine.flow import FlowLoader, FlowRunner
from flowengine.models import (
    Assertion,
    EndpointDefinition,
    ExecutionOutcome,
    ExecutionPreferences,
    FlowDefinition,
    FlowSequence,
    FlowStep,
    SequenceOutcome,
    StepEndpoint,
    StepOutcome,
    Transformation,
)
from flowengine.sequence import SequenceRunner

__version__ = "0.1.0"

__all__ = [
    "Assertion",
    "ConfigurationError",
    "EndpointDefinition",
    "ExecutionOutcome",
    "ExecutionPreferences",
    "FlowDefinition",
    "FlowEngine",
    "FlowEngineError",
    "FlowExecutionError",
    "FlowLoader",
    "FlowNotFoundError",
    "FlowRunner",
    "FlowSequence",
    "FlowStep",
    "FlowValidationError",
    "MissingParametersError",
    "SequenceOutcome",
    "SequenceRunner",
    "StepEndpoint",
    "StepOutcome",
    "TemplateResolutionError",
    "Transformation",
    "TransformationError",
    "__version__",
]
