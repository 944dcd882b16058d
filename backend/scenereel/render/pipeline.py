"""Render pipeline: drives one job through bundle, submit and poll.

Progress from each phase is blended into one 0-100 scale via PHASE_WEIGHTS.
Cancellation is cooperative: the job's token is checked at every progress
report, so a cancel lands at the next callback rather than interrupting the
backend mid-encode.
"""

import asyncio
import logging
from typing import Callable, Optional

from scenereel.exceptions import CANCELLED_MESSAGE, RenderCancelledError
from scenereel.render.backend import RenderBackend, RenderOptions
from scenereel.render.cancellation import CancellationToken
from scenereel.render.job_store import MutationResult, RenderJob, RenderJobStore
from scenereel.render.poller import StatusPoller
from scenereel.schemas.timeline import Timeline

logger = logging.getLogger(__name__)

# phase -> (start, end) of its share of overall progress
PHASE_WEIGHTS: dict[str, tuple[int, int]] = {
    "bundle": (0, 50),
    "encode": (50, 100),
}

PHASE_STAGES = {
    "bundle": "Bundling",
    "encode": "Encoding",
}

INTERRUPTED_MESSAGE = "Render interrupted by shutdown"

# Highest progress a job shows before it is marked completed
MAX_RUNNING_PROGRESS = 99

ProgressListener = Callable[[int, str], None]


def phase_progress(phase: str, fraction: float) -> int:
    """Overall progress for a fraction (0-1) of one phase."""
    start, end = PHASE_WEIGHTS[phase]
    fraction = max(0.0, min(1.0, fraction))
    return start + round(fraction * (end - start))


class RenderPipeline:
    """Runs render jobs against a backend created per job."""

    def __init__(
        self,
        store: RenderJobStore,
        backend_factory: Callable[[], RenderBackend],
        poller: Optional[StatusPoller] = None,
    ):
        self.store = store
        self._backend_factory = backend_factory
        self.poller = poller or StatusPoller()

    async def run(
        self,
        job_id: str,
        timeline: Timeline,
        options: RenderOptions,
        on_progress: Optional[ProgressListener] = None,
    ) -> Optional[RenderJob]:
        """Render one job to a terminal state.

        The job must be pending; any other state means it already ran (or was
        cancelled before starting) and the call returns without doing work.

        Returns:
            Final snapshot of the job record
        """
        if not self.store.claim(job_id):
            logger.info(f"[RENDER] Job {job_id} is not pending, skipping")
            return self.store.get(job_id)

        token = self.store.cancellation_token(job_id)
        backend = self._backend_factory()
        timeline = self._apply_overrides(timeline, options)
        reporter = _ProgressReporter(self.store, job_id, token, backend, on_progress)

        logger.info(
            f"[RENDER] Starting job {job_id}: {len(timeline.segments)} segments, "
            f"{timeline.duration:.2f}s @ {timeline.fps}fps {timeline.width}x{timeline.height}"
        )

        try:
            reporter.report("bundle", 0.0)
            serve_url = await backend.bundle(
                timeline, options, lambda fraction: reporter.report("bundle", fraction)
            )

            token.raise_if_cancelled()
            task_id = await backend.submit(serve_url, timeline, options)
            self._record_task(job_id, task_id)
            reporter.report("encode", 0.0)

            lo, hi = self.poller.window
            status = await self.poller.poll_until_terminal(
                backend,
                task_id,
                token,
                lambda local: reporter.report("encode", (local - lo) / (hi - lo)),
            )
        except RenderCancelledError:
            # The store already marked the job failed when cancel was requested
            logger.info(f"[RENDER] Job {job_id} stopped after cancellation")
            self.store.fail(job_id, CANCELLED_MESSAGE)
        except asyncio.CancelledError:
            logger.warning(f"[RENDER] Job {job_id} interrupted")
            self.store.fail(job_id, INTERRUPTED_MESSAGE, rendered_by=backend.name)
            raise
        except Exception as e:
            logger.error(f"[RENDER] Job {job_id} failed via {backend.name} backend: {e}")
            self.store.fail(job_id, str(e), rendered_by=backend.name)
        else:
            result = self.store.complete(
                job_id,
                output_url=status.output_location or "",
                output_key=status.output_key,
                rendered_by=backend.name,
            )
            if result == MutationResult.APPLIED:
                logger.info(f"[RENDER] Job {job_id} completed via {backend.name} backend: {status.output_location}")
            else:
                logger.info(f"[RENDER] Job {job_id} finished after reaching {result.value} state; result discarded")

        return self.store.get(job_id)

    def _record_task(self, job_id: str, task_id: str) -> None:
        def mutate(job: RenderJob) -> None:
            job.backend_task_id = task_id

        self.store.update(job_id, mutate)

    @staticmethod
    def _apply_overrides(timeline: Timeline, options: RenderOptions) -> Timeline:
        """Copy of the timeline with the request's fps/width/height applied."""
        overrides = {
            name: value
            for name, value in (("fps", options.fps), ("width", options.width), ("height", options.height))
            if value is not None
        }
        return timeline.model_copy(deep=True, update=overrides)


class _ProgressReporter:
    """Blends phase progress into the job record and the caller's listener."""

    def __init__(
        self,
        store: RenderJobStore,
        job_id: str,
        token: CancellationToken,
        backend: RenderBackend,
        listener: Optional[ProgressListener],
    ):
        self.store = store
        self.job_id = job_id
        self.token = token
        self.backend = backend
        self.listener = listener
        self.last_progress = -1

    def report(self, phase: str, fraction: float) -> None:
        self.token.raise_if_cancelled()

        # 100 is only set by store.complete()
        progress = min(phase_progress(phase, fraction), MAX_RUNNING_PROGRESS)
        stage = PHASE_STAGES[phase]
        rendered_by = self.backend.name

        def mutate(job: RenderJob) -> None:
            job.progress = progress
            job.current_stage = stage
            job.rendered_by = rendered_by

        result = self.store.update(self.job_id, mutate)
        if result == MutationResult.TERMINAL:
            # Cancel landed between the token check and the update
            self.token.raise_if_cancelled()
            return

        if progress > self.last_progress:
            self.last_progress = progress
            if self.listener:
                self.listener(progress, stage)
