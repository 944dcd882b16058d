"""Project/scene records handed to the render core by the persistence layer.

These are read-only inputs here; only the fields the timeline conversion
needs are modelled, everything else is ignored.
"""

from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, Field

from scenereel.schemas.base import CamelModel

MotionIntensity = Literal["low", "medium", "high"]


class _InputModel(CamelModel):
    model_config = ConfigDict(extra="ignore")


class VideoSettings(_InputModel):
    style: str = "realistic"
    motion_intensity: MotionIntensity = "medium"


class VideoMetadata(_InputModel):
    duration: float = Field(..., ge=0)  # seconds
    fps: int | None = None
    format: str | None = None


class GeneratedVideo(_InputModel):
    id: str
    url: str
    thumbnail_url: str | None = None
    settings: VideoSettings = Field(default_factory=VideoSettings)
    metadata: VideoMetadata


class GeneratedImage(_InputModel):
    id: str
    url: str


class Scene(_InputModel):
    id: str
    scene_number: int = 0
    generated_videos: list[GeneratedVideo] = Field(default_factory=list)
    images: list[GeneratedImage] = Field(default_factory=list)


class Project(_InputModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime | None = None
    scenes: list[Scene] = Field(default_factory=list)
