"""Error codes dictionary for the render API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by exception handlers to generate
machine-readable error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Request errors (not retryable, fix input)
    # ==========================================================================
    "INVALID_RENDER_REQUEST": {
        "retryable": False,
        "suggested_fix": "Provide compositionId and a timeline (or inputProps.timeline)",
    },
    "TIMELINE_CONTINUITY": {
        "retryable": False,
        "suggested_fix": "Rebuild the timeline from the project so segments are contiguous",
    },
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    # ==========================================================================
    # Render job errors
    # ==========================================================================
    "RENDER_JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_action": "resubmit",
        "suggested_endpoint": "POST /api/renders",
    },
    "RENDER_JOB_TERMINAL": {
        "retryable": False,
    },
    "RENDER_CANCELLED": {
        "retryable": False,
    },
    "RENDER_FAILED": {
        "retryable": False,
    },
    # ==========================================================================
    # Backend errors
    # ==========================================================================
    "RENDER_TIMEOUT": {
        "retryable": True,
        "suggested_action": "resubmit",
        "suggested_endpoint": "POST /api/renders",
    },
    "BACKEND_UNAVAILABLE": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 5000, "max_retries": 3},
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
