import logging
from pathlib import Path
from typing import Optional

from scenereel.config import Settings, get_settings

logger = logging.getLogger(__name__)


class LocalStorageService:
    """Local file storage for rendered output artifacts, addressed by storage key."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        self.base_path = Path(settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = settings.public_base_url.rstrip("/")

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = (self.base_path / storage_key).resolve()
        if not full_path.is_relative_to(self.base_path.resolve()):
            raise ValueError(f"Storage key escapes storage root: {storage_key}")
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    @staticmethod
    def key_for_render(render_id: str, output_format: str) -> str:
        """Storage key of a render's output artifact."""
        return f"renders/{render_id}.{output_format}"

    def get_public_url(self, storage_key: str) -> str:
        """Get URL for accessing the file."""
        return f"{self.public_base_url}/{storage_key}"

    def upload_file_from_bytes(self, storage_key: str, data: bytes) -> str:
        """Write bytes under a storage key and return its public URL."""
        full_path = self._get_full_path(storage_key)
        full_path.write_bytes(data)
        return self.get_public_url(storage_key)

    def delete_file(self, storage_key: str) -> bool:
        """Delete file."""
        full_path = self._get_full_path(storage_key)
        if full_path.exists():
            full_path.unlink()
            logger.info(f"Deleted artifact {storage_key}")
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if file exists."""
        return self._get_full_path(storage_key).exists()

    def get_file_path(self, storage_key: str) -> Path:
        """Get the actual file path for serving."""
        return self._get_full_path(storage_key)
