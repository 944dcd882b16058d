from scenereel.render.backend import (
    FailoverRenderBackend,
    RemoteRenderBackend,
    RenderOptions,
    SimulatedRenderBackend,
    create_render_backend,
)
from scenereel.render.job_store import (
    InMemoryRenderJobStore,
    RenderJob,
    RenderJobStore,
    RenderStatus,
)
from scenereel.render.pipeline import PHASE_WEIGHTS, RenderPipeline
from scenereel.render.poller import StatusPoller

__all__ = [
    "RenderPipeline",
    "PHASE_WEIGHTS",
    "StatusPoller",
    "RenderJob",
    "RenderJobStore",
    "InMemoryRenderJobStore",
    "RenderStatus",
    "RenderOptions",
    "RemoteRenderBackend",
    "SimulatedRenderBackend",
    "FailoverRenderBackend",
    "create_render_backend",
]
