"""Template references between flow steps."""

from flowengine.template.engine import (
    TemplateContext,
    build_template_context,
    has_template,
    resolve_object,
    resolve_reference,
    resolve_template,
    stringify,
)
from flowengine.template.functions import FUNCTION_REGISTRY, get_function

__all__ = [
    "FUNCTION_REGISTRY",
    "TemplateContext",
    "build_template_context",
    "get_function",
    "has_template",
    "resolve_object",
    "resolve_reference",
    "resolve_template",
    "stringify",
]
