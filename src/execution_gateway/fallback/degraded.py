"""
Degraded placeholder responses.

When every candidate of a fallback chain fails and graceful degradation is
enabled, callers receive a reduced-fidelity placeholder shaped like the
response they expected. The shape is chosen by matching known keys against
the lower-cased operation id (first match wins, in declaration order).
"""

from typing import Any, Callable, Optional

from execution_gateway.errors.exceptions import ClassifiedError

GENERIC_SHAPE = "generic"

# (key, factory) pairs; factories build fresh objects so callers may mutate them
DEGRADED_SHAPES: tuple[tuple[str, Callable[[], Any]], ...] = (
    ("text", lambda: "Service temporarily unavailable. Please try again later."),
    ("content", lambda: {"text": "Unable to generate content at this time.", "fallback": True}),
    ("analysis", lambda: {"score": 0, "insights": [], "error": "Analysis unavailable"}),
    ("schedule", lambda: {"times": [], "recommendation": "Unable to determine optimal times"}),
)


def degraded_shape(operation_id: str) -> str:
    """Name of the placeholder shape selected for an operation id."""
    lowered = operation_id.lower()
    for key, _ in DEGRADED_SHAPES:
        if key in lowered:
            return key
    return GENERIC_SHAPE


def degraded_response(operation_id: str, error: Optional[ClassifiedError] = None) -> Any:
    """
    Build the placeholder for an operation id.

    Args:
        operation_id: Logical operation identity (e.g. "schedule.optimal_times")
        error: Last classified error, used as the reason of the generic shape

    Returns:
        Shape-specific placeholder, or ``{"degraded": True, "reason": ...}``
    """
    shape = degraded_shape(operation_id)
    for key, factory in DEGRADED_SHAPES:
        if key == shape:
            return factory()
    reason = error.message if error is not None else "All providers failed"
    return {"degraded": True, "reason": reason}
