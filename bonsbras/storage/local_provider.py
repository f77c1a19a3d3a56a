"""
Local filesystem storage provider for development.
Saves files under LOCAL_STORAGE_DIR/<bucket>/<path>; the app serves that
directory at /storage.
"""
from typing import Optional
from pathlib import Path
from urllib.parse import quote

from ..config import settings
from .provider import StorageProvider, StorageConflictError, clean_path


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider for development."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, bucket: str, path: str) -> Path:
        return self.base_dir / clean_path(bucket) / clean_path(path)

    def upload(self, bucket: str, path: str, data: bytes, content_type: str, upsert: bool = False) -> str:
        target = self._get_path(bucket, path)
        if target.exists() and not upsert:
            raise StorageConflictError(f"{bucket}/{path} already exists")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return self._url(bucket, path)

    def _url(self, bucket: str, path: str) -> str:
        return f"{settings.public_base_url}/storage/{quote(clean_path(bucket))}/{quote(clean_path(path))}"

    def get_public_url(self, bucket: str, path: str) -> Optional[str]:
        if self._get_path(bucket, path).exists():
            return self._url(bucket, path)
        return None

    def exists(self, bucket: str, path: str) -> bool:
        return self._get_path(bucket, path).exists()

    def delete(self, bucket: str, path: str) -> None:
        target = self._get_path(bucket, path)
        target.unlink(missing_ok=True)
