from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "SceneReel Render API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Render defaults (merged with per-request overrides)
    render_output_width: int = 1920
    render_output_height: int = 1080
    render_fps: int = 30
    render_background_color: str = "#000000"
    render_quality: int = 85

    # Rendering backend. Empty URL = no remote backend, every job renders
    # through the simulated fallback.
    render_backend_url: str = ""
    render_backend_timeout_seconds: float = 30.0

    # Status polling
    render_poll_interval_seconds: float = 1.0
    render_poll_max_attempts: int = 300

    # Job records (and their output artifacts) older than this are swept
    render_job_max_age_seconds: int = 24 * 60 * 60

    # Pseudo-processing time per segment for the simulated fallback
    fallback_step_seconds: float = 1.0

    # Output artifact storage
    local_storage_path: str = "/tmp/scenereel-storage"
    public_base_url: str = "http://localhost:8000/api/storage/files"


@lru_cache
def get_settings() -> Settings:
    return Settings()
