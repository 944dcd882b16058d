"""Render orchestration service.

Entry point for every render operation. submit() validates the request,
records a pending job and schedules the pipeline as a background asyncio
task, then returns immediately; callers follow the job through get() or
the progress notifier.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Protocol

from pydantic import ValidationError

from scenereel.config import Settings, get_settings
from scenereel.exceptions import (
    CANCELLED_MESSAGE,
    BackendUnavailableError,
    InvalidRenderRequestError,
    RenderFailureError,
    RenderJobNotFoundError,
    RenderJobTerminalError,
)
from scenereel.render.backend import (
    RemoteRenderBackend,
    RenderBackend,
    RenderOptions,
    create_render_backend,
)
from scenereel.render.job_store import (
    CancelResult,
    InMemoryRenderJobStore,
    RenderJob,
    RenderJobStore,
    RenderStatus,
)
from scenereel.render.pipeline import RenderPipeline
from scenereel.render.poller import StatusPoller
from scenereel.schemas.project import Project
from scenereel.schemas.render import RenderRequest
from scenereel.schemas.timeline import Timeline, TimelineSettings
from scenereel.services.storage_service import LocalStorageService
from scenereel.services.timeline_builder import TimelineBuilder, estimate_render_seconds
from scenereel.services.timeline_validator import TimelineValidationResult, TimelineValidator

logger = logging.getLogger(__name__)

DEFAULT_COMPOSITION_ID = "VideoComposition"


class RenderNotifier(Protocol):
    async def notify_progress(self, job_id: str, percent: float, status: str, current_step: Optional[str] = None) -> None: ...

    async def notify_complete(self, job_id: str, output_url: str) -> None: ...

    async def notify_error(self, job_id: str, error_message: str, error_code: Optional[str] = None) -> None: ...

    async def notify_cancelled(self, job_id: str) -> None: ...


class RenderService:
    """Submits, tracks and cancels render jobs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[RenderJobStore] = None,
        storage: Optional[LocalStorageService] = None,
        builder: Optional[TimelineBuilder] = None,
        validator: Optional[TimelineValidator] = None,
        backend_factory: Optional[Callable[[], RenderBackend]] = None,
        poller: Optional[StatusPoller] = None,
        notifier: Optional[RenderNotifier] = None,
        remote_backend: Optional[RemoteRenderBackend] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or LocalStorageService(self.settings)
        self.store = store or InMemoryRenderJobStore(storage=self.storage)
        self.builder = builder or TimelineBuilder(self.settings)
        self.validator = validator or TimelineValidator()
        self.notifier = notifier
        # Used by sweep() to delete outputs held by the rendering service
        self.remote_backend = remote_backend or RemoteRenderBackend(
            self.settings.render_backend_url,
            timeout=self.settings.render_backend_timeout_seconds,
        )

        if backend_factory is None:
            def backend_factory() -> RenderBackend:
                return create_render_backend(self.settings, self.storage)

        self.pipeline = RenderPipeline(
            self.store,
            backend_factory,
            poller or StatusPoller(
                interval_seconds=self.settings.render_poll_interval_seconds,
                max_attempts=self.settings.render_poll_max_attempts,
            ),
        )
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # Job operations
    # =========================================================================

    async def submit(self, request: RenderRequest) -> RenderJob:
        """Create a pending job and start rendering it in the background.

        Raises:
            InvalidRenderRequestError: composition id or timeline missing/invalid
            ContinuityError: the timeline failed the structural checks
        """
        await self.sweep()

        timeline = self._extract_timeline(request)
        self.validator.require_renderable(timeline)
        estimated_seconds = estimate_render_seconds(timeline)

        job = self.store.create(
            composition_id=request.composition_id,
            project_id=request.project_id,
            timeline=timeline.model_dump(mode="json", by_alias=True),
            options={
                "output_format": request.output_format,
                "codec": request.codec,
                "quality": request.quality,
                "fps": request.fps,
                "width": request.width,
                "height": request.height,
                "estimated_seconds": estimated_seconds,
            },
        )
        options = RenderOptions(
            render_id=job.id,
            composition_id=request.composition_id,
            output_format=request.output_format,
            codec=request.codec,
            quality=request.quality,
            fps=request.fps,
            width=request.width,
            height=request.height,
        )

        logger.info(
            f"[RENDER] Accepted job {job.id} for composition {request.composition_id} "
            f"({len(timeline.segments)} segments, ~{estimated_seconds}s)"
        )
        self._spawn(self._run(job.id, timeline, options))
        return job

    def get(self, render_id: str) -> RenderJob:
        job = self.store.get(render_id)
        if job is None:
            raise RenderJobNotFoundError(render_id)
        return job

    def list_for_project(self, project_id: str) -> list[RenderJob]:
        return self.store.list_jobs(project_id)

    async def cancel(self, render_id: str) -> RenderJob:
        """Cancel a pending or rendering job.

        Raises:
            RenderJobNotFoundError: Unknown render id
            RenderJobTerminalError: Job already completed or failed
        """
        result = self.store.cancel(render_id)
        if result == CancelResult.NOT_FOUND:
            raise RenderJobNotFoundError(render_id)

        job = self.get(render_id)
        if result == CancelResult.ALREADY_TERMINAL:
            raise RenderJobTerminalError(render_id, job.status.value)

        if self.notifier:
            await self.notifier.notify_cancelled(render_id)
        return job

    async def sweep(self) -> list[str]:
        """Evict expired jobs and delete their outputs, local or remote."""
        evicted = self.store.sweep(self.settings.render_job_max_age_seconds)

        for job in evicted:
            if (
                job.status != RenderStatus.COMPLETED
                or job.output_key
                or job.rendered_by != RemoteRenderBackend.name
                or not job.backend_task_id
            ):
                continue
            try:
                await self.remote_backend.delete_output(job.backend_task_id)
            except (BackendUnavailableError, RenderFailureError) as e:
                logger.warning(f"[SWEEP] Failed to delete remote output of {job.id}: {e}")

        return [job.id for job in evicted]

    # =========================================================================
    # Project conversions
    # =========================================================================

    def build_timeline(
        self,
        project: Project,
        settings_override: Optional[TimelineSettings] = None,
    ) -> tuple[Timeline, TimelineValidationResult]:
        timeline = self.builder.build(project, settings_override)
        return timeline, self.validator.validate(project, timeline)

    async def render_project(
        self,
        project: Project,
        settings_override: Optional[TimelineSettings] = None,
        request: Optional[RenderRequest] = None,
    ) -> RenderJob:
        """Build, validate and submit a project's timeline.

        Raises:
            ContinuityError: The built timeline failed validation; no job is created
        """
        timeline = self.builder.build(project, settings_override)
        self.validator.require_valid(project, timeline)

        request = request or RenderRequest()
        request = request.model_copy(
            update={
                "timeline": timeline,
                "input_props": None,
                "composition_id": request.composition_id or DEFAULT_COMPOSITION_ID,
                "project_id": request.project_id or project.id,
            }
        )
        return await self.submit(request)

    # =========================================================================
    # Background tasks
    # =========================================================================

    async def shutdown(self) -> None:
        """Cancel in-flight render tasks and wait for them to settle."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"[RENDER] Cancelling {len(tasks)} in-flight render task(s)")
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until every scheduled render task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job_id: str, timeline: Timeline, options: RenderOptions) -> None:
        on_progress = None
        sent: list[asyncio.Task] = []
        if self.notifier:
            notifier = self.notifier

            def on_progress(progress: int, stage: str) -> None:
                sent.append(
                    self._spawn(notifier.notify_progress(job_id, progress, RenderStatus.RENDERING.value, stage))
                )

        job = await self.pipeline.run(job_id, timeline, options, on_progress)
        if job is None or not self.notifier:
            return

        # Terminal message goes out after every progress message
        await asyncio.gather(*sent, return_exceptions=True)

        if job.status == RenderStatus.COMPLETED:
            await self.notifier.notify_complete(job_id, job.output_url or "")
        elif job.status == RenderStatus.FAILED and job.error_message != CANCELLED_MESSAGE:
            await self.notifier.notify_error(job_id, job.error_message or "Render failed")

    @staticmethod
    def _extract_timeline(request: RenderRequest) -> Timeline:
        if not request.composition_id:
            raise InvalidRenderRequestError("compositionId is required")

        if request.timeline is not None:
            return request.timeline

        raw = (request.input_props or {}).get("timeline")
        if not raw:
            raise InvalidRenderRequestError("timeline is required (directly or as inputProps.timeline)")

        try:
            return Timeline.model_validate(raw)
        except ValidationError as e:
            raise InvalidRenderRequestError(f"Invalid timeline: {e.error_count()} validation error(s)") from e
