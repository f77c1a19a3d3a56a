from typing import Optional

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings

from ..config import settings
from .provider import StorageProvider, StorageConflictError, clean_path


class BlobStorageProvider(StorageProvider):
    """Azure Blob storage; buckets are key prefixes inside one public-read container."""

    name = "blob"

    def __init__(self) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container

    def _blob(self, bucket: str, path: str):
        return self._service.get_blob_client(self._container, f"{clean_path(bucket)}/{clean_path(path)}")

    def upload(self, bucket: str, path: str, data: bytes, content_type: str, upsert: bool = False) -> str:
        client = self._blob(bucket, path)
        try:
            client.upload_blob(
                data,
                overwrite=upsert,
                content_settings=ContentSettings(content_type=content_type),
            )
        except ResourceExistsError as exc:
            raise StorageConflictError(f"{bucket}/{path} already exists") from exc
        return client.url

    def get_public_url(self, bucket: str, path: str) -> Optional[str]:
        client = self._blob(bucket, path)
        return client.url if client.exists() else None

    def exists(self, bucket: str, path: str) -> bool:
        return self._blob(bucket, path).exists()

    def delete(self, bucket: str, path: str) -> None:
        try:
            self._blob(bucket, path).delete_blob()
        except ResourceNotFoundError:
            pass


def get_storage() -> StorageProvider:
    """
    Storage provider based on configuration: Azure Blob when it is configured,
    local filesystem otherwise.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    from .local_provider import LocalStorageProvider

    return LocalStorageProvider()
