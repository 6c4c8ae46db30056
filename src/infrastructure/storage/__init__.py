"""
Object storage integration.

Supports AWS S3 (boto3) and any other S3-compatible host (MinIO SDK)
behind one client contract. Includes mock mode for local development
without credentials.
"""

from .cdn import Cdn
from .client import (
    BatchDeleteError,
    CdnConfig,
    ObjectStorageClient,
    RequestPriority,
    StorageDisposedError,
    StorageError,
    unescape_etag,
)
from .factory import create_storage_client
from .policies import build_public_read_policy

__all__ = [
    "Cdn",
    "BatchDeleteError",
    "CdnConfig",
    "ObjectStorageClient",
    "RequestPriority",
    "StorageDisposedError",
    "StorageError",
    "unescape_etag",
    "create_storage_client",
    "build_public_read_policy",
]
