from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from scenereel.schemas.base import CamelModel

# Maximum start-time drift between adjacent segments (seconds)
CONTINUITY_EPSILON = 0.1

TIMELINE_SCHEMA_VERSION = "2.0.0"


class Position(CamelModel):
    x: float = 0
    y: float = 0
    width: float = 1920
    height: float = 1080


class VideoEffect(CamelModel):
    """Effect hint consumed by the rendering backend, never executed here."""
    id: str
    type: str  # contrast, saturation, blur, ...
    intensity: float = 0.0
    properties: dict[str, Any] = Field(default_factory=dict)


class Segment(CamelModel):
    id: str
    video_src: str = ""  # empty for a placeholder
    thumbnail_src: str | None = None
    start_time: float = 0.0
    duration: float = 0.0
    trim_start: float = 0.0
    trim_end: float | None = None
    position: Position = Field(default_factory=Position)
    opacity: float = 1.0
    scale: float = 1.0
    rotation: float = 0.0
    effects: list[VideoEffect] = Field(default_factory=list)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def is_placeholder(self) -> bool:
        return not self.video_src


class Transition(CamelModel):
    id: str
    type: Literal["crossfade"] = "crossfade"
    duration: float = 0.5
    position: float = 0.0  # seconds from timeline start
    direction: str = "left"
    intensity: float = 0.7
    properties: dict[str, Any] = Field(default_factory=dict)


class TimelineMetadata(CamelModel):
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: str = TIMELINE_SCHEMA_VERSION
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    original_project_id: str | None = None


class TimelineSettings(CamelModel):
    """Output settings merged into a Timeline. Missing fields fall back to app settings."""
    fps: int | None = Field(default=None, gt=0)
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    background_color: str | None = None
    quality: int | None = Field(default=None, ge=0, le=100)


class Timeline(CamelModel):
    id: str
    name: str
    duration: float = 0.0  # seconds, end of last segment
    fps: int = Field(default=30, gt=0)
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)
    background_color: str = "#000000"
    segments: list[Segment] = Field(default_factory=list)
    transitions: list[Transition] = Field(default_factory=list)

    # Carried through to the backend untouched
    audio_tracks: list[dict[str, Any]] = Field(default_factory=list)
    text_overlays: list[dict[str, Any]] = Field(default_factory=list)
    effects: list[dict[str, Any]] = Field(default_factory=list)

    metadata: TimelineMetadata = Field(default_factory=TimelineMetadata)
