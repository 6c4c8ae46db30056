"""
Object storage client contract.

Two backends implement the same protocol:
- AwsStorageClient wraps boto3 and is used for AWS endpoints
- S3CompatibleStorageClient wraps the MinIO SDK and is used for every
  other S3-compatible host (self-hosted MinIO, Ceph, R2, ...)

MockStorageClient keeps everything in memory for local development.

Every request goes through the client's own TaskScheduler with a
priority band, so administrative calls preempt reads and reads preempt
bulk uploads. Backend quirks (pagination style, existence checks, ETag
quoting) stay inside the implementations.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Callable, Optional, Protocol, TypeVar, Union
from urllib.parse import urlsplit

from ...core.scheduling import TaskScheduler
from ...core.storage.models import BucketInfo, ListedItem, UploadedObject

logger = logging.getLogger(__name__)

T = TypeVar("T")

# S3 rejects batch deletes with more keys than this
MAX_DELETE_BATCH_SIZE = 1000

# Page size requested from listing APIs
MAX_LIST_PAGE_SIZE = 1000

# Part size for multipart transfers
UPLOAD_PART_SIZE = 10 * 1024 * 1024

Body = Union[bytes, BinaryIO]


class RequestPriority(IntEnum):
    """Scheduler priority bands; lower values start first."""
    ADMINISTRATIVE = 0
    DOWNLOAD = 1
    UPLOAD = 2


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


class StorageDisposedError(StorageError):
    """Raised when storage is used after it has been disposed."""
    pass


class BatchDeleteError(StorageError):
    """
    Raised when a batch delete could not remove every object.

    `failed_object_names` lists every key that may still exist. Keys from
    a chunk whose whole request failed are included, since their state is
    unknown. `causes` holds those chunk-level exceptions.
    """

    def __init__(self, failed_object_names: list[str], causes: Optional[list[Exception]] = None) -> None:
        self.failed_object_names = failed_object_names
        self.causes = causes or []
        super().__init__(
            "\n".join(["CDN Error. Could not delete following objects:", *failed_object_names])
        )


@dataclass
class CdnConfig:
    """
    Configuration for one bucket behind the CDN.

    Built by the config layer; the storage code never reads the
    environment itself.
    """
    endpoint: str
    region: str
    access_key: str
    secret_key: str
    bucket_name: str
    root_url: str
    max_concurrency: int = 250
    mock_mode: bool = False


class ObjectStorageClient(Protocol):
    """
    Object storage primitives shared by all backends.

    Bucket and object names are passed explicitly; binding to a single
    bucket is the CDN facade's job.
    """

    @property
    def scheduler(self) -> TaskScheduler:
        ...

    async def create_bucket(self, bucket_name: str, region: str) -> None:
        ...

    async def put_bucket_policy(self, bucket_name: str, policy: Union[dict, str]) -> None:
        ...

    async def list_buckets(self) -> list[BucketInfo]:
        ...

    async def list_objects(self, bucket_name: str, prefix: str, recursive: bool) -> list[ListedItem]:
        """List every matching key, paging through the whole result set."""
        ...

    async def get_object(self, bucket_name: str, object_name: str) -> bytes:
        ...

    async def object_exists(self, bucket_name: str, object_name: str) -> bool:
        """False when the backend reports not-found; other errors propagate."""
        ...

    async def delete_object(self, bucket_name: str, object_name: str) -> None:
        ...

    async def delete_objects(self, bucket_name: str, object_names: list[str]) -> None:
        """Delete in chunks; raises BatchDeleteError naming every failed key."""
        ...

    async def copy_object(
        self,
        bucket_name: str,
        source_name: str,
        target_name: str,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        ...

    async def upload(
        self,
        bucket_name: str,
        object_name: str,
        stream: Body,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadedObject:
        ...

    async def delete_bucket(self, bucket_name: str) -> None:
        ...

    def close(self) -> None:
        ...


_ETAG_QUOTES = re.compile(r'^(?:"|&quot;|&#34;)|(?:"|&quot;|&#34;)$')


def unescape_etag(etag: Optional[str]) -> Optional[str]:
    """
    Strip surrounding quotes from an ETag.

    Some backends return '"abc"', others HTML-escape it as
    '&quot;abc&quot;' or '&#34;abc&#34;'.
    """
    if etag is None:
        return None
    return _ETAG_QUOTES.sub("", etag)


def endpoint_url(endpoint: str) -> str:
    """Endpoint as a full URL; bare hosts default to https."""
    endpoint = endpoint.strip().rstrip("/")
    if "://" not in endpoint:
        return f"https://{endpoint}"
    return endpoint


def endpoint_host(endpoint: str) -> str:
    """Host (and port, if any) part of an endpoint."""
    return urlsplit(endpoint_url(endpoint)).netloc


def split_into_chunks(items: list, chunk_size: int) -> list[list]:
    return [items[i:i + chunk_size] for i in range(0, len(items), chunk_size)]


class ScheduledStorageClient:
    """
    Shared plumbing for SDK-backed clients.

    SDK calls are blocking, so each one runs with `asyncio.to_thread`
    inside a scheduler slot. The scheduler bound therefore caps the number
    of requests in flight, not just the number of waiting coroutines.
    """

    def __init__(self, max_concurrency: int = 250) -> None:
        self._scheduler = TaskScheduler(max_concurrency)

    @property
    def scheduler(self) -> TaskScheduler:
        return self._scheduler

    async def _request(self, priority: RequestPriority, func: Callable[..., T], *args, **kwargs) -> T:
        return await self._scheduler.submit(
            lambda: asyncio.to_thread(func, *args, **kwargs),
            priority,
        )

    async def _delete_in_chunks(
        self,
        object_names: list[str],
        delete_chunk: Callable[[list[str]], list[str]],
    ) -> None:
        """
        Run `delete_chunk` once per chunk and aggregate failures.

        `delete_chunk` is a blocking callable returning the keys the
        backend reported as not deleted.
        """
        chunks = split_into_chunks(object_names, MAX_DELETE_BATCH_SIZE)
        results = await asyncio.gather(
            *(self._request(RequestPriority.ADMINISTRATIVE, delete_chunk, chunk) for chunk in chunks),
            return_exceptions=True,
        )

        failed_object_names: list[str] = []
        causes: list[Exception] = []
        for chunk, result in zip(chunks, results):
            if isinstance(result, BaseException):
                failed_object_names.extend(chunk)
                causes.append(result)
            else:
                failed_object_names.extend(result)

        if failed_object_names:
            logger.error(
                "Batch delete incomplete",
                extra={
                    "requested": len(object_names),
                    "failed": len(failed_object_names),
                    "failed_chunks": len(causes),
                }
            )
            raise BatchDeleteError(failed_object_names, causes)
