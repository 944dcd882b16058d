from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from scenereel.schemas.base import CamelModel
from scenereel.schemas.project import Project
from scenereel.schemas.timeline import Timeline, TimelineSettings

OutputFormat = Literal["mp4", "webm"]
Codec = Literal["h264", "h265", "vp8", "vp9"]


class RenderRequest(CamelModel):
    """Submit-render payload.

    The timeline may arrive directly or wrapped as ``inputProps.timeline``
    (the composition's input props). Presence is checked by the render
    service so a missing field is reported as an invalid request rather than
    a schema error.
    """

    composition_id: str | None = None
    timeline: Timeline | None = None
    input_props: dict[str, Any] | None = None
    output_format: OutputFormat = "mp4"
    codec: Codec = "h264"
    quality: int = Field(default=85, ge=0, le=100)
    fps: int | None = Field(default=None, gt=0)
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    project_id: str | None = None


class RenderSubmitResponse(CamelModel):
    render_id: str
    status: str
    estimated_seconds: int | None = None


class RenderStatusResponse(CamelModel):
    render_id: str
    status: str
    progress: int
    current_stage: str | None = None
    output_url: str | None = None
    error: str | None = None
    rendered_by: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class RenderCancelResponse(CamelModel):
    render_id: str
    status: str
    error: str | None = None


class ProjectRenderRequest(CamelModel):
    """Render a project: build its timeline, validate it, then submit."""
    project: Project
    settings: TimelineSettings | None = None
    render: RenderRequest = Field(default_factory=RenderRequest)


class TimelineBuildRequest(CamelModel):
    project: Project
    settings: TimelineSettings | None = None


class TimelineBuildResponse(CamelModel):
    timeline: Timeline
    valid: bool
    issues: list[str] = Field(default_factory=list)
    estimated_seconds: int
