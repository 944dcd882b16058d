"""Rendering backends.

A render is three calls against a backend: bundle the timeline's assets,
submit the bundle for encoding, then poll the encode task until it is
terminal. Two implementations exist:

- RemoteRenderBackend talks to the real rendering service over HTTP.
- SimulatedRenderBackend steps through the timeline locally and writes a
  placeholder artifact. Every log line it emits is tagged [FALLBACK].

FailoverRenderBackend wraps one of each for a single job and swaps to the
simulated backend the first time the remote one is unreachable.
"""

import asyncio
import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from scenereel.config import Settings
from scenereel.exceptions import BackendUnavailableError, RenderFailureError
from scenereel.schemas.timeline import Timeline
from scenereel.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)

# Fraction of the current phase completed, in [0, 1]
ProgressCallback = Callable[[float], None]
SleepFunc = Callable[[float], Awaitable[None]]

BACKEND_RENDERING = "rendering"
BACKEND_COMPLETED = "completed"
BACKEND_ERROR = "error"

_STATUS_ALIASES = {
    "pending": BACKEND_RENDERING,
    "queued": BACKEND_RENDERING,
    "processing": BACKEND_RENDERING,
    "rendering": BACKEND_RENDERING,
    "done": BACKEND_COMPLETED,
    "completed": BACKEND_COMPLETED,
    "failed": BACKEND_ERROR,
    "error": BACKEND_ERROR,
}


@dataclass
class RenderOptions:
    """Per-job render parameters handed to the backend."""

    render_id: str
    composition_id: Optional[str] = None
    output_format: str = "mp4"
    codec: str = "h264"
    quality: int = 85
    fps: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "renderId": self.render_id,
            "compositionId": self.composition_id,
            "outputFormat": self.output_format,
            "codec": self.codec,
            "quality": self.quality,
            "fps": self.fps,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class BackendStatus:
    """One poll result. progress is 0-100 on the backend's own scale."""

    progress: float
    status: str = BACKEND_RENDERING
    output_location: Optional[str] = None
    output_key: Optional[str] = None  # set when the artifact lives in local storage
    error: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == BACKEND_COMPLETED

    @property
    def is_error(self) -> bool:
        return self.status == BACKEND_ERROR

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BackendStatus":
        raw_status = str(payload.get("status", BACKEND_RENDERING)).lower()
        return cls(
            progress=float(payload.get("progress") or 0),
            status=_STATUS_ALIASES.get(raw_status, BACKEND_RENDERING),
            output_location=payload.get("outputLocation") or payload.get("outputUrl"),
            error=payload.get("error"),
        )


class RenderBackend(Protocol):
    name: str

    async def bundle(
        self,
        timeline: Timeline,
        options: RenderOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Prepare assets for encoding and return the bundle's serve URL."""
        ...

    async def submit(self, serve_url: str, timeline: Timeline, options: RenderOptions) -> str:
        """Start encoding and return the backend task id."""
        ...

    async def poll(self, task_id: str) -> BackendStatus:
        ...


class RemoteRenderBackend:
    """HTTP client for the real rendering service."""

    name = "remote"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        if not self.base_url:
            raise BackendUnavailableError("Rendering backend URL not configured")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=payload)
        except httpx.TimeoutException as e:
            raise BackendUnavailableError(f"Rendering backend timed out: {method} {path}") from e
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Rendering backend unreachable: {e}") from e

        if response.status_code >= 500:
            logger.error(f"[RENDER] Backend error: {response.status_code} {response.text}")
            raise BackendUnavailableError(f"Rendering backend error: {response.status_code}")
        if response.status_code >= 400:
            raise RenderFailureError(self._error_message(response))
        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise RenderFailureError(f"Invalid JSON from rendering backend: {e}") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("message") or body.get("detail")
            if message:
                return str(message)
        return f"Rendering backend rejected request: {response.status_code}"

    async def bundle(
        self,
        timeline: Timeline,
        options: RenderOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        if on_progress:
            on_progress(0.0)
        data = await self._request(
            "POST",
            "/bundles",
            {
                "compositionId": options.composition_id,
                "timeline": timeline.model_dump(mode="json", by_alias=True),
            },
        )
        serve_url = data.get("serveUrl")
        if not serve_url:
            raise RenderFailureError("Rendering backend returned no serveUrl")
        if on_progress:
            on_progress(1.0)
        return serve_url

    async def submit(self, serve_url: str, timeline: Timeline, options: RenderOptions) -> str:
        payload = options.to_dict()
        payload["serveUrl"] = serve_url
        payload["inputProps"] = {"timeline": timeline.model_dump(mode="json", by_alias=True)}
        data = await self._request("POST", "/renders", payload)
        task_id = data.get("taskId")
        if not task_id:
            raise RenderFailureError("Rendering backend returned no taskId")
        logger.info(f"[RENDER] Submitted {options.render_id} to remote backend as {task_id}")
        return str(task_id)

    async def poll(self, task_id: str) -> BackendStatus:
        data = await self._request("GET", f"/renders/{task_id}")
        return BackendStatus.from_payload(data)

    async def delete_output(self, task_id: str) -> None:
        """Ask the rendering service to drop a finished task's output."""
        await self._request("DELETE", f"/renders/{task_id}")
        logger.info(f"[SWEEP] Deleted remote output of task {task_id}")


@dataclass
class _SimulatedTask:
    task_id: str
    timeline: Timeline
    options: RenderOptions
    total_steps: int
    segments_per_step: int = 1
    step: int = 0
    segment_ids: list[str] = field(default_factory=list)


class SimulatedRenderBackend:
    """Local stand-in used when the rendering service is unreachable.

    Each poll sleeps ``step_seconds`` and advances one segment, so total
    time grows with segment count and progress rises linearly. When
    ``max_steps`` is set, long timelines advance several segments per poll
    so the render always finishes within that many polls. The final poll
    writes a JSON manifest of the timeline as the output artifact.
    """

    name = "simulated"

    def __init__(
        self,
        storage: LocalStorageService,
        step_seconds: float = 1.0,
        sleep: Optional[SleepFunc] = None,
        max_steps: Optional[int] = None,
    ):
        self.storage = storage
        self.step_seconds = step_seconds
        self.max_steps = max_steps
        self._sleep = sleep or asyncio.sleep
        self._tasks: dict[str, _SimulatedTask] = {}

    async def bundle(
        self,
        timeline: Timeline,
        options: RenderOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        logger.info(f"[FALLBACK] Bundling {options.render_id} locally ({len(timeline.segments)} segments)")
        if on_progress:
            on_progress(1.0)
        return f"simulated://{timeline.id}"

    async def submit(self, serve_url: str, timeline: Timeline, options: RenderOptions) -> str:
        task_id = f"sim-{options.render_id}-{uuid.uuid4().hex[:8]}"
        segment_count = max(1, len(timeline.segments))
        segments_per_step = 1
        if self.max_steps:
            segments_per_step = math.ceil(segment_count / self.max_steps)

        self._tasks[task_id] = _SimulatedTask(
            task_id=task_id,
            timeline=timeline,
            options=options,
            total_steps=math.ceil(segment_count / segments_per_step),
            segments_per_step=segments_per_step,
            segment_ids=[segment.id for segment in timeline.segments],
        )
        logger.info(
            f"[FALLBACK] Simulating render {options.render_id} as {task_id} "
            f"({segment_count} segments, {segments_per_step} per step)"
        )
        return task_id

    async def poll(self, task_id: str) -> BackendStatus:
        task = self._tasks.get(task_id)
        if task is None:
            raise RenderFailureError(f"Unknown simulated render task: {task_id}")

        await self._sleep(self.step_seconds)
        task.step += 1
        progress = task.step * 100 / task.total_steps
        logger.debug(
            f"[FALLBACK] {task_id} step {task.step}/{task.total_steps} "
            f"({min(task.step * task.segments_per_step, len(task.segment_ids))} segments)"
        )

        if task.step < task.total_steps:
            return BackendStatus(progress=progress, status=BACKEND_RENDERING)

        del self._tasks[task_id]
        output_key = self.storage.key_for_render(task.options.render_id, task.options.output_format)
        output_url = await asyncio.to_thread(
            self.storage.upload_file_from_bytes, output_key, self._manifest(task)
        )
        logger.info(f"[FALLBACK] Wrote placeholder artifact {output_key}")
        return BackendStatus(
            progress=100,
            status=BACKEND_COMPLETED,
            output_location=output_url,
            output_key=output_key,
        )

    @staticmethod
    def _manifest(task: _SimulatedTask) -> bytes:
        timeline = task.timeline
        manifest = {
            "renderId": task.options.render_id,
            "renderedBy": "simulated",
            "timelineId": timeline.id,
            "duration": timeline.duration,
            "fps": timeline.fps,
            "width": timeline.width,
            "height": timeline.height,
            "outputFormat": task.options.output_format,
            "codec": task.options.codec,
            "segments": [
                {
                    "id": segment.id,
                    "src": segment.video_src,
                    "startTime": segment.start_time,
                    "duration": segment.duration,
                }
                for segment in timeline.segments
            ],
        }
        return json.dumps(manifest, indent=2).encode("utf-8")


class FailoverRenderBackend:
    """Per-job adapter: remote until it is unreachable, then simulated.

    The switch happens at most once, on a BackendUnavailableError from
    bundle, submit or the first poll. Later failures propagate. Genuine
    render failures never trigger the switch.
    """

    def __init__(self, primary: RenderBackend, fallback: RenderBackend):
        self._primary = primary
        self._fallback = fallback
        self._active = primary
        self._polled = False
        self._timeline: Optional[Timeline] = None
        self._options: Optional[RenderOptions] = None
        self._task_ids: dict[str, str] = {}

    @property
    def name(self) -> str:
        return self._active.name

    @property
    def degraded(self) -> bool:
        return self._active is self._fallback

    def _switch(self, render_id: str, reason: Exception) -> None:
        logger.warning(f"[FALLBACK] Rendering backend unavailable for {render_id}, switching to simulated render: {reason}")
        self._active = self._fallback

    async def bundle(
        self,
        timeline: Timeline,
        options: RenderOptions,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        if not self.degraded:
            try:
                return await self._primary.bundle(timeline, options, on_progress)
            except BackendUnavailableError as e:
                self._switch(options.render_id, e)
        return await self._fallback.bundle(timeline, options, on_progress)

    async def submit(self, serve_url: str, timeline: Timeline, options: RenderOptions) -> str:
        self._timeline = timeline
        self._options = options
        if not self.degraded:
            try:
                return await self._primary.submit(serve_url, timeline, options)
            except BackendUnavailableError as e:
                self._switch(options.render_id, e)
        return await self._fallback.submit(serve_url, timeline, options)

    async def poll(self, task_id: str) -> BackendStatus:
        if not self.degraded:
            try:
                status = await self._primary.poll(task_id)
            except BackendUnavailableError as e:
                if self._polled or self._timeline is None or self._options is None:
                    raise
                self._switch(self._options.render_id, e)
                self._task_ids[task_id] = await self._fallback.submit("", self._timeline, self._options)
            else:
                self._polled = True
                return status
        return await self._fallback.poll(self._task_ids.get(task_id, task_id))


def create_render_backend(
    settings: Settings,
    storage: LocalStorageService,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Optional[SleepFunc] = None,
) -> FailoverRenderBackend:
    """Fresh failover backend for one job."""
    return FailoverRenderBackend(
        primary=RemoteRenderBackend(
            settings.render_backend_url,
            timeout=settings.render_backend_timeout_seconds,
            transport=transport,
        ),
        fallback=SimulatedRenderBackend(
            storage,
            step_seconds=settings.fallback_step_seconds,
            sleep=sleep,
            # Stay below the poller's attempt limit
            max_steps=max(1, settings.render_poll_max_attempts - 1),
        ),
    )
