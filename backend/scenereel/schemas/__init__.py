from scenereel.schemas.project import GeneratedImage, GeneratedVideo, Project, Scene
from scenereel.schemas.render import (
    RenderCancelResponse,
    RenderRequest,
    RenderStatusResponse,
    RenderSubmitResponse,
)
from scenereel.schemas.timeline import Segment, Timeline, TimelineSettings, Transition

__all__ = [
    "Project",
    "Scene",
    "GeneratedVideo",
    "GeneratedImage",
    "Timeline",
    "Segment",
    "Transition",
    "TimelineSettings",
    "RenderRequest",
    "RenderSubmitResponse",
    "RenderStatusResponse",
    "RenderCancelResponse",
]
