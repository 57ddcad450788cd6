"""
Azure Blob Storage backend for the object store.

Logical paths map one-to-one onto blob names inside a single container. The
URLs handed out are the blobs' own URLs, and any blob URL (or a bare blob
name) is accepted back as a reference.
"""

import logging
import os
from typing import Optional
from urllib.parse import unquote, urlparse

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from .object_store import ObjectNotFoundError, ObjectStore

logger = logging.getLogger(__name__)


def blob_name_from_url(path_or_url: str) -> str:
    """
    Extract a blob name from a blob URL, or return a blob name unchanged.

    Blob URLs look like https://<account>.blob.core.windows.net/<container>/<blob>;
    the first path segment is the container and is dropped.
    """
    if not path_or_url.startswith(("http://", "https://")):
        return path_or_url.lstrip("/")
    parts = [p for p in urlparse(path_or_url).path.split("/") if p]
    if len(parts) > 1:
        return unquote("/".join(parts[1:]))
    return unquote(parts[0]) if parts else path_or_url


class AzureBlobObjectStore(ObjectStore):
    """Object store backed by one Azure Blob Storage container."""

    def __init__(self, container: ContainerClient, service: Optional[BlobServiceClient] = None):
        """
        Args:
            container: Async client of the container holding the objects
            service: Owning service client, closed together with the store
        """
        self.container = container
        self.service = service
        self._container_ready = False

    @classmethod
    def from_connection_string(cls, connection_string: str, container_name: str) -> "AzureBlobObjectStore":
        if not connection_string:
            raise ValueError("AZURE_STORAGE_CONNECTION_STRING is required for the azure storage backend")
        service = BlobServiceClient.from_connection_string(connection_string)
        return cls(service.get_container_client(container_name), service)

    @property
    def container_url(self) -> str:
        return self.container.url.split("?", 1)[0].rstrip("/")

    def _blob_name(self, path_or_url: str) -> str:
        if path_or_url.startswith(self.container_url + "/"):
            return unquote(path_or_url[len(self.container_url) + 1:].split("?", 1)[0])
        return blob_name_from_url(path_or_url)

    async def _ensure_container(self):
        if self._container_ready:
            return
        if not await self.container.exists():
            await self.container.create_container()
            logger.info(f"Created blob container: {self.container.container_name}")
        self._container_ready = True

    def is_store_reference(self, path_or_url: str) -> bool:
        return path_or_url.startswith(self.container_url + "/") or "://" not in path_or_url

    def url_for(self, path: str) -> str:
        return self.container.get_blob_client(self._blob_name(path)).url

    async def get(self, path: str, local_file: str) -> str:
        name = self._blob_name(path)
        try:
            downloader = await self.container.get_blob_client(name).download_blob()
        except ResourceNotFoundError as e:
            raise ObjectNotFoundError(name) from e
        os.makedirs(os.path.dirname(local_file) or ".", exist_ok=True)
        with open(local_file, "wb") as f:
            await downloader.readinto(f)
        logger.debug(f"Downloaded blob {name} to {local_file}")
        return local_file

    async def get_bytes(self, path: str) -> bytes:
        name = self._blob_name(path)
        try:
            downloader = await self.container.get_blob_client(name).download_blob()
        except ResourceNotFoundError as e:
            raise ObjectNotFoundError(name) from e
        return await downloader.readall()

    async def put_file(self, local_file: str, path: str, content_type: str = "application/octet-stream") -> str:
        await self._ensure_container()
        blob = self.container.get_blob_client(self._blob_name(path))
        with open(local_file, "rb") as data:
            await blob.upload_blob(data, overwrite=True, content_settings=ContentSettings(content_type=content_type))
        logger.debug(f"Uploaded file {local_file} to blob {blob.blob_name} ({content_type})")
        return blob.url

    async def put_bytes(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        await self._ensure_container()
        blob = self.container.get_blob_client(self._blob_name(path))
        await blob.upload_blob(data, overwrite=True, content_settings=ContentSettings(content_type=content_type))
        logger.debug(f"Uploaded {len(data)} bytes to blob {blob.blob_name} ({content_type})")
        return blob.url

    async def exists(self, path: str) -> bool:
        return await self.container.get_blob_client(self._blob_name(path)).exists()

    async def delete(self, path: str) -> None:
        name = self._blob_name(path)
        try:
            await self.container.get_blob_client(name).delete_blob()
        except ResourceNotFoundError:
            logger.debug(f"Blob {name} already gone")
            return
        logger.debug(f"Deleted blob {name}")

    async def close(self):
        await self.container.close()
        if self.service is not None:
            await self.service.close()
