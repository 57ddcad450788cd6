"""Startup selection of the object store backend."""

import logging

from .azure_blob import AzureBlobObjectStore
from .object_store import FilesystemObjectStore, ObjectStore

logger = logging.getLogger(__name__)


def build_object_store(config) -> ObjectStore:
    """Create the store named by config.storage_backend."""
    if config.storage_backend == "azure":
        logger.info(f"Object store: Azure Blob container {config.azure_storage_container}")
        return AzureBlobObjectStore.from_connection_string(config.azure_storage_connection_string,
                                                          config.azure_storage_container)
    logger.info(f"Object store: filesystem at {config.storage_root}")
    return FilesystemObjectStore(config.storage_root, config.storage_public_url)
