"""
Durable blob storage for session artifacts.
"""

from .azure_blob import AzureBlobObjectStore, blob_name_from_url
from .factory import build_object_store
from .object_store import (
    CATEGORIES,
    FilesystemObjectStore,
    ObjectNotFoundError,
    ObjectStore,
    blob_path,
)

__all__ = [
    "CATEGORIES",
    "AzureBlobObjectStore",
    "FilesystemObjectStore",
    "ObjectNotFoundError",
    "ObjectStore",
    "blob_name_from_url",
    "blob_path",
    "build_object_store",
]
