"""
Object store adapter addressed by logical paths.

Paths look like ``sessions/{session_id}/{category}/{name}``. The filesystem
backend keeps objects under a root directory and hands out URLs built from a
public base URL, so HTTP-only consumers can fetch them.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from typing import Optional
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

CATEGORIES = (
    "original",
    "chunks",
    "transcriptions",
    "captioned_previews",
    "thumbnails",
    "output",
)


class ObjectNotFoundError(Exception):
    """The requested object does not exist in the store."""

    error_code = "OBJECT_NOT_FOUND"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Object not found: {path}")


def blob_path(session_id: str, category: str, name: str) -> str:
    """Build the logical path of a session artifact."""
    if category not in CATEGORIES:
        raise ValueError(f"Unknown storage category: {category}")
    return f"sessions/{session_id}/{category}/{name}"


class ObjectStore:
    """Interface of the durable blob store used by the stage processors."""

    async def get(self, path: str, local_file: str) -> str:
        raise NotImplementedError

    async def get_bytes(self, path: str) -> bytes:
        raise NotImplementedError

    async def put_file(self, local_file: str, path: str, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    async def put_bytes(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    async def exists(self, path: str) -> bool:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError

    def url_for(self, path: str) -> str:
        raise NotImplementedError

    def is_store_reference(self, path_or_url: str) -> bool:
        """Whether the value names an object in this store rather than an external URL."""
        raise NotImplementedError

    async def close(self):
        """Release client connections held by the backend."""


class FilesystemObjectStore(ObjectStore):
    """Object store backed by a local (or mounted) directory tree."""

    def __init__(self, root: str, public_url: Optional[str] = None):
        """
        Args:
            root: Directory holding the objects
            public_url: Base URL the objects are served under (file:// URLs when omitted)
        """
        self.root = os.path.abspath(root)
        self.public_url = public_url.rstrip("/") if public_url else None
        os.makedirs(self.root, exist_ok=True)

    def _logical_path(self, path_or_url: str) -> str:
        """Accept a logical path or a URL previously returned by url_for."""
        value = path_or_url
        if self.public_url and value.startswith(self.public_url + "/"):
            value = value[len(self.public_url) + 1:]
        elif value.startswith("file://"):
            local = unquote(urlparse(value).path)
            value = os.path.relpath(local, self.root)
        value = value.lstrip("/")
        normalized = os.path.normpath(value)
        if normalized.startswith("..") or os.path.isabs(normalized):
            raise ValueError(f"Path escapes the store root: {path_or_url}")
        return normalized.replace(os.sep, "/")

    def _local_path(self, path_or_url: str) -> str:
        return os.path.join(self.root, self._logical_path(path_or_url))

    def is_store_reference(self, path_or_url: str) -> bool:
        if self.public_url and path_or_url.startswith(self.public_url + "/"):
            return True
        if path_or_url.startswith("file://"):
            return True
        return "://" not in path_or_url

    def url_for(self, path: str) -> str:
        logical = self._logical_path(path)
        if self.public_url:
            return f"{self.public_url}/{logical}"
        return "file://" + os.path.join(self.root, logical)

    def _write_atomic(self, target: str, writer) -> None:
        os.makedirs(os.path.dirname(target), exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=os.path.dirname(target), prefix=".upload_")
        try:
            with os.fdopen(fd, "wb") as f:
                writer(f)
            os.replace(temp_path, target)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    async def get(self, path: str, local_file: str) -> str:
        source = self._local_path(path)
        if not os.path.isfile(source):
            raise ObjectNotFoundError(path)
        os.makedirs(os.path.dirname(local_file) or ".", exist_ok=True)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, shutil.copyfile, source, local_file)
        logger.debug(f"Downloaded object {path} to {local_file}")
        return local_file

    async def get_bytes(self, path: str) -> bytes:
        source = self._local_path(path)
        if not os.path.isfile(source):
            raise ObjectNotFoundError(path)
        with open(source, "rb") as f:
            return f.read()

    async def put_file(self, local_file: str, path: str, content_type: str = "application/octet-stream") -> str:
        target = self._local_path(path)

        def _copy(dest):
            with open(local_file, "rb") as src:
                shutil.copyfileobj(src, dest)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_atomic, target, _copy)
        logger.debug(f"Uploaded file {local_file} to {path} ({content_type})")
        return self.url_for(path)

    async def put_bytes(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        target = self._local_path(path)
        self._write_atomic(target, lambda dest: dest.write(data))
        logger.debug(f"Uploaded {len(data)} bytes to {path} ({content_type})")
        return self.url_for(path)

    async def exists(self, path: str) -> bool:
        return os.path.isfile(self._local_path(path))

    async def delete(self, path: str) -> None:
        target = self._local_path(path)
        if os.path.isfile(target):
            os.remove(target)
            logger.debug(f"Deleted object {path}")
