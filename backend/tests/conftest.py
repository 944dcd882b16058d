"""
Pytest fixtures for SceneReel backend tests.

All fixtures run without network access or real waiting:
- settings point artifact storage at a tmp_path and zero every poll/step delay
- FakeClock drives job timestamps so age-based sweeps are deterministic
- the sample project is the three-scene project used across the suite
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from scenereel.config import Settings
from scenereel.render.job_store import InMemoryRenderJobStore
from scenereel.schemas.project import Project
from scenereel.services.storage_service import LocalStorageService


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def instant_sleep(seconds: float) -> None:
    """Yield to the event loop without waiting."""
    await asyncio.sleep(0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        local_storage_path=str(tmp_path / "storage"),
        public_base_url="http://testserver/api/storage/files",
        render_backend_url="",
        render_poll_interval_seconds=0,
        fallback_step_seconds=0,
    )


@pytest.fixture
def storage(settings) -> LocalStorageService:
    return LocalStorageService(settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(storage, clock) -> InMemoryRenderJobStore:
    return InMemoryRenderJobStore(storage=storage, clock=clock)


@pytest.fixture
def sample_project() -> Project:
    """Scene A: one 5s video. Scene B: image only. Scene C: 4s and 6s videos."""
    return Project.model_validate({
        "id": "proj-1",
        "name": "Demo",
        "description": "Three scene demo",
        "createdAt": "2024-01-01T00:00:00Z",
        "scenes": [
            {
                "id": "scene-a",
                "sceneNumber": 1,
                "generatedVideos": [
                    {
                        "id": "va",
                        "url": "https://cdn.example.com/va.mp4",
                        "thumbnailUrl": "https://cdn.example.com/va.jpg",
                        "settings": {"style": "cinematic", "motionIntensity": "medium"},
                        "metadata": {"duration": 5, "fps": 30, "format": "mp4"},
                    }
                ],
                "images": [],
            },
            {
                "id": "scene-b",
                "sceneNumber": 2,
                "generatedVideos": [],
                "images": [{"id": "img-b", "url": "https://cdn.example.com/b.png"}],
            },
            {
                "id": "scene-c",
                "sceneNumber": 3,
                "generatedVideos": [
                    {
                        "id": "vc1",
                        "url": "https://cdn.example.com/vc1.mp4",
                        "settings": {"style": "realistic", "motionIntensity": "high"},
                        "metadata": {"duration": 4},
                    },
                    {
                        "id": "vc2",
                        "url": "https://cdn.example.com/vc2.mp4",
                        "metadata": {"duration": 6},
                    },
                ],
                "images": [],
            },
        ],
    })
