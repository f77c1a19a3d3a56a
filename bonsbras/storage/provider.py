from typing import Optional


BUCKET_AVATARS = "avatars"
BUCKET_PORTFOLIO = "portfolio"
BUCKET_PROJECT_PHOTOS = "project-photos"


class StorageConflictError(Exception):
    """Raised when a non-upsert upload targets an existing object."""


class StorageProvider:
    name = "base"

    def upload(self, bucket: str, path: str, data: bytes, content_type: str, upsert: bool = False) -> str:
        """Store ``data`` under ``bucket/path`` and return its public URL."""
        raise NotImplementedError

    def get_public_url(self, bucket: str, path: str) -> Optional[str]:
        raise NotImplementedError

    def exists(self, bucket: str, path: str) -> bool:
        raise NotImplementedError

    def delete(self, bucket: str, path: str) -> None:
        raise NotImplementedError


def clean_path(path: str) -> str:
    parts = path.replace("\\", "/").split("/")
    return "/".join(p for p in parts if p not in ("", ".", ".."))
