"""Tests for the render pipeline.

Features:
- Phase-weighted progress tracking
- Remote rendering and simulated fallback
- Failure, timeout and cancellation handling
- Job management (single run per job)
"""

import json

import httpx
import pytest

from conftest import instant_sleep
from scenereel.exceptions import CANCELLED_MESSAGE
from scenereel.render.backend import RenderOptions, create_render_backend
from scenereel.render.job_store import RenderStatus
from scenereel.render.pipeline import PHASE_WEIGHTS, RenderPipeline, phase_progress
from scenereel.render.poller import StatusPoller
from scenereel.schemas.project import Project
from scenereel.services.timeline_builder import TimelineBuilder

BASE_URL = "http://render.test"


class FakeRenderService:
    """Scriptable HTTP rendering service behind httpx.MockTransport."""

    def __init__(self, poll_responses=None, poll_error=None):
        self.poll_responses = poll_responses or [
            {"progress": 0, "status": "rendering"},
            {"progress": 50, "status": "rendering"},
            {"progress": 100, "status": "completed", "outputLocation": "https://cdn.render.test/out.mp4"},
        ]
        self.poll_error = poll_error
        self.polls = 0
        self.submitted = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/bundles":
            return httpx.Response(200, json={"serveUrl": f"{BASE_URL}/serve/1"})
        if request.url.path == "/renders":
            self.submitted = json.loads(request.content)
            return httpx.Response(200, json={"taskId": "task-1"})

        self.polls += 1
        if self.poll_error is not None:
            raise self.poll_error(request)
        response = self.poll_responses[min(self.polls, len(self.poll_responses)) - 1]
        return httpx.Response(200, json=response)


def _connect_error(request):
    return httpx.ConnectError("connection refused", request=request)


@pytest.fixture
def timeline(settings, sample_project):
    return TimelineBuilder(settings).build(sample_project)


def _pipeline(store, settings, storage, handler=None, max_attempts=300) -> RenderPipeline:
    if handler is not None:
        settings = settings.model_copy(update={"render_backend_url": BASE_URL})
    transport = httpx.MockTransport(handler) if handler is not None else None
    return RenderPipeline(
        store,
        lambda: create_render_backend(settings, storage, transport=transport, sleep=instant_sleep),
        StatusPoller(interval_seconds=0, max_attempts=max_attempts, sleep=instant_sleep),
    )


def _options(job_id: str, **overrides) -> RenderOptions:
    return RenderOptions(render_id=job_id, composition_id="VideoComposition", quality=85, codec="h264", **overrides)


class TestPhaseWeights:
    """Tests for the phase weight table."""

    def test_table(self):
        assert PHASE_WEIGHTS == {"bundle": (0, 50), "encode": (50, 100)}

    def test_bundle_mapping(self):
        assert phase_progress("bundle", 0) == 0
        assert phase_progress("bundle", 0.5) == 25
        assert phase_progress("bundle", 1) == 50

    def test_encode_mapping(self):
        assert phase_progress("encode", 0) == 50
        assert phase_progress("encode", 0.3) == 65
        assert phase_progress("encode", 1) == 100

    def test_clamps_fraction(self):
        assert phase_progress("encode", 1.7) == 100
        assert phase_progress("bundle", -1) == 0


class TestRemoteRender:
    """Tests for rendering through the remote backend."""

    @pytest.mark.asyncio
    async def test_completes_with_increasing_progress(self, store, settings, storage, timeline):
        service = FakeRenderService()
        pipeline = _pipeline(store, settings, storage, service)
        job = store.create(composition_id="VideoComposition")
        reported = []

        final = await pipeline.run(job.id, timeline, _options(job.id), lambda p, stage: reported.append((p, stage)))

        assert final.status == RenderStatus.COMPLETED
        assert final.progress == 100
        assert final.output_url == "https://cdn.render.test/out.mp4"
        assert final.rendered_by == "remote"
        assert final.completed_at is not None

        values = [p for p, _ in reported]
        assert values == sorted(set(values))
        assert [p for p, stage in reported if stage == "Bundling"] == [0, 50]
        assert all(p >= 50 for p, stage in reported if stage == "Encoding")
        assert values[-1] == 99
        assert final.backend_task_id == "task-1"

    @pytest.mark.asyncio
    async def test_submits_render_options(self, store, settings, storage, timeline):
        service = FakeRenderService()
        job = store.create(composition_id="VideoComposition")

        await _pipeline(store, settings, storage, service).run(job.id, timeline, _options(job.id))

        assert service.submitted["quality"] == 85
        assert service.submitted["codec"] == "h264"
        assert service.submitted["compositionId"] == "VideoComposition"

    @pytest.mark.asyncio
    async def test_overrides_apply_to_copy_only(self, store, settings, storage, timeline):
        service = FakeRenderService()
        job = store.create(composition_id="VideoComposition")

        await _pipeline(store, settings, storage, service).run(
            job.id, timeline, _options(job.id, fps=60, width=1280, height=720)
        )

        sent = service.submitted["inputProps"]["timeline"]
        assert (sent["fps"], sent["width"], sent["height"]) == (60, 1280, 720)
        assert (timeline.fps, timeline.width, timeline.height) == (30, 1920, 1080)

    @pytest.mark.asyncio
    async def test_render_failure_message_passthrough(self, store, settings, storage, timeline):
        """A backend-reported error fails the job with its text and keeps progress."""
        service = FakeRenderService(poll_responses=[
            {"progress": 40, "status": "rendering"},
            {"progress": 40, "status": "error", "error": "Out of memory while encoding"},
        ])
        job = store.create(composition_id="VideoComposition")

        final = await _pipeline(store, settings, storage, service).run(job.id, timeline, _options(job.id))

        assert final.status == RenderStatus.FAILED
        assert final.error_message == "Out of memory while encoding"
        assert final.progress == 70
        assert final.rendered_by == "remote"

    @pytest.mark.asyncio
    async def test_timeout_fails_job(self, store, settings, storage, timeline):
        service = FakeRenderService(poll_responses=[{"progress": 10, "status": "rendering"}])
        job = store.create(composition_id="VideoComposition")

        final = await _pipeline(store, settings, storage, service, max_attempts=3).run(
            job.id, timeline, _options(job.id)
        )

        assert final.status == RenderStatus.FAILED
        assert final.error_message == "Render timed out after 3 status checks"
        assert service.polls == 3


class TestFallbackRender:
    """Tests for the simulated fallback path."""

    @pytest.mark.asyncio
    async def test_first_poll_failure_falls_back(self, store, settings, storage, timeline):
        service = FakeRenderService(poll_error=_connect_error)
        job = store.create(composition_id="VideoComposition")

        final = await _pipeline(store, settings, storage, service).run(job.id, timeline, _options(job.id))

        assert service.polls == 1
        assert final.status == RenderStatus.COMPLETED
        assert final.rendered_by == "simulated"
        assert final.output_url.endswith(f"renders/{job.id}.mp4")
        assert storage.file_exists(final.output_key)

    @pytest.mark.asyncio
    async def test_no_backend_configured_renders_simulated(self, store, settings, storage, timeline):
        job = store.create(composition_id="VideoComposition")
        reported = []

        final = await _pipeline(store, settings, storage).run(
            job.id, timeline, _options(job.id), lambda p, stage: reported.append(p)
        )

        assert final.status == RenderStatus.COMPLETED
        assert final.rendered_by == "simulated"
        assert reported == sorted(set(reported))
        assert reported[-1] == 99

    @pytest.mark.asyncio
    async def test_long_timeline_finishes_within_poll_limit(self, store, settings, storage):
        """More segments than status checks still completes in degraded mode."""
        project = Project.model_validate({
            "id": "long",
            "name": "Long",
            "scenes": [
                {
                    "id": f"s{i}",
                    "generatedVideos": [
                        {"id": f"v{i}", "url": f"https://cdn.example.com/v{i}.mp4", "metadata": {"duration": 1}}
                    ],
                }
                for i in range(301)
            ],
        })
        timeline = TimelineBuilder(settings).build(project)
        job = store.create(composition_id="VideoComposition")
        seen = []

        def record(progress, stage):
            seen.append((progress, store.get(job.id).status))

        final = await _pipeline(store, settings, storage).run(job.id, timeline, _options(job.id), record)

        assert len(timeline.segments) == 301
        assert final.status == RenderStatus.COMPLETED
        assert final.rendered_by == "simulated"
        assert final.progress == 100
        assert seen
        assert all(status == RenderStatus.RENDERING and progress < 100 for progress, status in seen)


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_during_encoding(self, store, settings, storage, timeline):
        service = FakeRenderService(poll_responses=[{"progress": 10, "status": "rendering"}])
        job = store.create(composition_id="VideoComposition")

        def cancel_once_encoding(progress, stage):
            if stage == "Encoding" and progress > 50:
                store.cancel(job.id)

        final = await _pipeline(store, settings, storage, service).run(
            job.id, timeline, _options(job.id), cancel_once_encoding
        )

        assert final.status == RenderStatus.FAILED
        assert final.error_message == CANCELLED_MESSAGE
        assert service.polls == 1

    @pytest.mark.asyncio
    async def test_cancel_during_bundling_skips_submit(self, store, settings, storage, timeline):
        service = FakeRenderService()
        job = store.create(composition_id="VideoComposition")

        def cancel_on_start(progress, stage):
            store.cancel(job.id)

        final = await _pipeline(store, settings, storage, service).run(
            job.id, timeline, _options(job.id), cancel_on_start
        )

        assert final.error_message == CANCELLED_MESSAGE
        assert final.progress == 0
        assert service.submitted is None

    @pytest.mark.asyncio
    async def test_cancelled_before_start_does_no_work(self, store, settings, storage, timeline):
        job = store.create(composition_id="VideoComposition")
        store.cancel(job.id)
        created = []

        pipeline = RenderPipeline(store, lambda: created.append(1), StatusPoller(sleep=instant_sleep))
        final = await pipeline.run(job.id, timeline, _options(job.id))

        assert final.status == RenderStatus.FAILED
        assert final.error_message == CANCELLED_MESSAGE
        assert created == []


class TestJobManagement:
    @pytest.mark.asyncio
    async def test_runs_at_most_once(self, store, settings, storage, timeline):
        service = FakeRenderService()
        pipeline = _pipeline(store, settings, storage, service)
        job = store.create(composition_id="VideoComposition")

        await pipeline.run(job.id, timeline, _options(job.id))
        polls_after_first = service.polls
        final = await pipeline.run(job.id, timeline, _options(job.id))

        assert final.status == RenderStatus.COMPLETED
        assert service.polls == polls_after_first

    @pytest.mark.asyncio
    async def test_unknown_job(self, store, settings, storage, timeline):
        assert await _pipeline(store, settings, storage).run("render_0_unknown00", timeline, _options("x")) is None
