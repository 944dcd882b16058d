import asyncio
import logging
from typing import Awaitable, Callable, Optional

from scenereel.exceptions import (
    BackendUnavailableError,
    RenderFailureError,
    RenderTimeoutError,
)
from scenereel.render.backend import BackendStatus, RenderBackend
from scenereel.render.cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 300

# Local sub-range reserved for the backend's rendering progress
DEFAULT_PROGRESS_WINDOW = (30, 90)


def remap_progress(progress: float, window: tuple[int, int] = DEFAULT_PROGRESS_WINDOW) -> int:
    """Map backend progress (0-100) into the local window."""
    lo, hi = window
    clamped = max(0.0, min(100.0, float(progress)))
    return lo + round(clamped * (hi - lo) / 100)


class StatusPoller:
    """Polls a backend task until it completes, fails, times out or is cancelled."""

    def __init__(
        self,
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        window: tuple[int, int] = DEFAULT_PROGRESS_WINDOW,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.window = window
        self._sleep = sleep or asyncio.sleep

    async def poll_until_terminal(
        self,
        backend: RenderBackend,
        task_id: str,
        token: CancellationToken,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> BackendStatus:
        """Poll until the task is completed.

        Args:
            backend: Backend that owns the task
            task_id: Backend task id returned by submit
            token: Job's cancellation token, checked before and after every poll
            on_progress: Called with the remapped local progress after each poll

        Returns:
            The completed BackendStatus (carries the output location)

        Raises:
            RenderCancelledError: The token was set
            RenderFailureError: The backend reported an error
            RenderTimeoutError: max_attempts polls without a terminal status
        """
        for attempt in range(1, self.max_attempts + 1):
            token.raise_if_cancelled()

            try:
                status = await backend.poll(task_id)
            except BackendUnavailableError as e:
                if attempt == self.max_attempts:
                    raise
                logger.warning(f"[POLL] {task_id} attempt {attempt}/{self.max_attempts} failed: {e}")
                await self._sleep(self.interval_seconds)
                continue

            token.raise_if_cancelled()

            if status.is_error:
                raise RenderFailureError(status.error or f"Render task {task_id} failed")

            if on_progress:
                on_progress(remap_progress(status.progress, self.window))

            if status.is_completed:
                logger.info(f"[POLL] {task_id} completed after {attempt} poll(s)")
                return status

            await self._sleep(self.interval_seconds)

        raise RenderTimeoutError(
            f"Render timed out after {self.max_attempts} status checks"
        )
