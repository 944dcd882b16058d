"""Custom exceptions for the render orchestration core.

Every exception carries a machine-readable error code (see
``scenereel.constants.error_codes``) and the HTTP status it maps to.
Errors raised while a render is running never escape to the caller's
request; they are recorded on the job and surfaced through the status query.
"""

from scenereel.constants.error_codes import get_error_spec
from scenereel.schemas.envelope import ErrorInfo, SuggestedAction

CANCELLED_MESSAGE = "cancelled by user"


class SceneReelError(Exception):
    """Base exception for all render errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    endpoint=spec.get("suggested_endpoint"),
                    parameters=spec.get("parameters", {}),
                )
            )

        return ErrorInfo(
            code=self.code,
            message=self.message,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Request errors (no job is created)
# =============================================================================


class InvalidRenderRequestError(SceneReelError):
    """Submit request is malformed or incomplete."""

    code = "INVALID_RENDER_REQUEST"
    status_code = 400
    message = "Invalid render request"


class ContinuityError(SceneReelError):
    """Timeline failed structural validation; the render is not attempted."""

    code = "TIMELINE_CONTINUITY"
    status_code = 422
    message = "Timeline failed validation"

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        summary = "; ".join(self.issues[:3])
        if len(self.issues) > 3:
            summary += f" (+{len(self.issues) - 3} more)"
        super().__init__(f"Timeline failed validation: {summary}")

    def to_error_info(self) -> ErrorInfo:
        info = super().to_error_info()
        info.issues = self.issues
        return info


# =============================================================================
# Job lookup errors
# =============================================================================


class RenderJobNotFoundError(SceneReelError):
    code = "RENDER_JOB_NOT_FOUND"
    status_code = 404
    message = "Render job not found"

    def __init__(self, render_id: str | None = None):
        message = f"Render job not found: {render_id}" if render_id else self.message
        super().__init__(message)


class RenderJobTerminalError(SceneReelError):
    """Cancel was attempted on a completed or failed job."""

    code = "RENDER_JOB_TERMINAL"
    status_code = 409
    message = "Render job has already finished"

    def __init__(self, render_id: str, status: str):
        super().__init__(f"Cannot cancel {status} render job: {render_id}")


# =============================================================================
# Errors raised while a render is running
# =============================================================================


class BackendUnavailableError(SceneReelError):
    """Rendering backend could not be reached; triggers the simulated fallback."""

    code = "BACKEND_UNAVAILABLE"
    status_code = 503
    message = "Rendering backend unavailable"


class RenderFailureError(SceneReelError):
    """Backend reported a genuine bundle/encode failure."""

    code = "RENDER_FAILED"
    status_code = 502
    message = "Render failed"


class RenderTimeoutError(SceneReelError, TimeoutError):
    code = "RENDER_TIMEOUT"
    status_code = 504
    message = "Render timed out"


class RenderCancelledError(SceneReelError):
    code = "RENDER_CANCELLED"
    status_code = 409
    message = CANCELLED_MESSAGE
