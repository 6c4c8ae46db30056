"""
In-memory storage backend for local development.

Mirrors the ObjectStorageClient contract closely enough to run the full
upload / list / quota flow without provisioning object storage: buckets
must exist, non-recursive listings group keys into common prefixes, batch
deletes are chunked, and ETags arrive quoted just like from a real S3.

Not suitable for production, but perfect for development and testing.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Iterable, Optional, Union

from ...core.storage.models import BucketInfo, CommonPrefix, ListedItem, StorageObject, UploadedObject
from .client import Body, RequestPriority, ScheduledStorageClient, StorageError, unescape_etag

logger = logging.getLogger(__name__)


@dataclass
class _MockObject:
    data: bytes
    content_type: str
    metadata: dict[str, str]
    last_modified: datetime
    etag: str


@dataclass
class _MockBucket:
    creation_date: datetime
    policy: Optional[str] = None
    objects: dict[str, _MockObject] = field(default_factory=dict)


class MockStorageClient(ScheduledStorageClient):
    """Dictionary-backed object storage; requests still go through the scheduler."""

    def __init__(self, max_concurrency: int = 250, buckets: Iterable[str] = ()) -> None:
        super().__init__(max_concurrency)
        now = datetime.now(timezone.utc)
        self._buckets: dict[str, _MockBucket] = {name: _MockBucket(creation_date=now) for name in buckets}
        logger.info("Initialized mock storage client (in-memory)")

    def _bucket(self, bucket_name: str) -> _MockBucket:
        if bucket_name not in self._buckets:
            raise StorageError(f"Bucket not found: {bucket_name}")
        return self._buckets[bucket_name]

    def get_bucket_policy(self, bucket_name: str) -> Optional[str]:
        """Policy last applied to a bucket, for inspection in tests."""
        return self._bucket(bucket_name).policy

    async def create_bucket(self, bucket_name: str, region: str) -> None:
        await self._request(RequestPriority.ADMINISTRATIVE, self._create_bucket, bucket_name)

    def _create_bucket(self, bucket_name: str) -> None:
        if bucket_name in self._buckets:
            raise StorageError(f"Bucket already exists: {bucket_name}")
        self._buckets[bucket_name] = _MockBucket(creation_date=datetime.now(timezone.utc))

    async def put_bucket_policy(self, bucket_name: str, policy: Union[dict, str]) -> None:
        policy_json = policy if isinstance(policy, str) else json.dumps(policy)
        await self._request(RequestPriority.ADMINISTRATIVE, self._put_bucket_policy, bucket_name, policy_json)

    def _put_bucket_policy(self, bucket_name: str, policy_json: str) -> None:
        self._bucket(bucket_name).policy = policy_json

    async def list_buckets(self) -> list[BucketInfo]:
        return await self._request(RequestPriority.ADMINISTRATIVE, self._list_buckets)

    def _list_buckets(self) -> list[BucketInfo]:
        return [
            BucketInfo(name=name, creation_date=bucket.creation_date)
            for name, bucket in sorted(self._buckets.items())
        ]

    async def list_objects(self, bucket_name: str, prefix: str, recursive: bool) -> list[ListedItem]:
        return await self._request(RequestPriority.DOWNLOAD, self._list_objects, bucket_name, prefix, recursive)

    def _list_objects(self, bucket_name: str, prefix: str, recursive: bool) -> list[ListedItem]:
        bucket = self._bucket(bucket_name)
        objects: list[ListedItem] = []
        common_prefixes: dict[str, None] = {}

        for name in sorted(bucket.objects):
            if not name.startswith(prefix):
                continue

            remainder = name[len(prefix):]
            if not recursive and "/" in remainder:
                common_prefixes[prefix + remainder.split("/", 1)[0] + "/"] = None
                continue

            obj = bucket.objects[name]
            objects.append(StorageObject(
                name=name,
                last_modified=obj.last_modified,
                etag=unescape_etag(obj.etag),
                size=len(obj.data),
            ))

        objects.extend(CommonPrefix(prefix=common_prefix) for common_prefix in common_prefixes)
        return objects

    async def get_object(self, bucket_name: str, object_name: str) -> bytes:
        return await self._request(RequestPriority.DOWNLOAD, self._get_object, bucket_name, object_name)

    def _get_object(self, bucket_name: str, object_name: str) -> bytes:
        bucket = self._bucket(bucket_name)
        if object_name not in bucket.objects:
            raise StorageError(f"Object not found: {object_name}")
        return bucket.objects[object_name].data

    async def object_exists(self, bucket_name: str, object_name: str) -> bool:
        return await self._request(RequestPriority.DOWNLOAD, self._object_exists, bucket_name, object_name)

    def _object_exists(self, bucket_name: str, object_name: str) -> bool:
        bucket = self._buckets.get(bucket_name)
        return bucket is not None and object_name in bucket.objects

    async def delete_object(self, bucket_name: str, object_name: str) -> None:
        await self._request(RequestPriority.ADMINISTRATIVE, self._delete_chunk, bucket_name, [object_name])

    async def delete_objects(self, bucket_name: str, object_names: list[str]) -> None:
        await self._delete_in_chunks(object_names, partial(self._delete_chunk, bucket_name))

    def _delete_chunk(self, bucket_name: str, object_names: list[str]) -> list[str]:
        bucket = self._bucket(bucket_name)
        for name in object_names:
            bucket.objects.pop(name, None)
        return []

    async def copy_object(
        self,
        bucket_name: str,
        source_name: str,
        target_name: str,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._copy_object,
            bucket_name,
            source_name,
            target_name,
            content_type,
            metadata or {},
        )

    def _copy_object(
        self,
        bucket_name: str,
        source_name: str,
        target_name: str,
        content_type: str,
        metadata: dict[str, str],
    ) -> None:
        data = self._get_object(bucket_name, source_name)
        self._put(bucket_name, target_name, data, content_type, metadata)

    async def upload(
        self,
        bucket_name: str,
        object_name: str,
        stream: Body,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadedObject:
        return await self._request(
            RequestPriority.UPLOAD,
            self._upload,
            bucket_name,
            object_name,
            stream,
            content_type,
            metadata or {},
        )

    def _upload(
        self,
        bucket_name: str,
        object_name: str,
        stream: Body,
        content_type: str,
        metadata: dict[str, str],
    ) -> UploadedObject:
        data = bytes(stream) if isinstance(stream, (bytes, bytearray)) else stream.read()
        obj = self._put(bucket_name, object_name, data, content_type, metadata)
        return UploadedObject(name=object_name, etag=unescape_etag(obj.etag))

    def _put(
        self,
        bucket_name: str,
        object_name: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, str],
    ) -> _MockObject:
        obj = _MockObject(
            data=data,
            content_type=content_type,
            metadata=dict(metadata),
            last_modified=datetime.now(timezone.utc),
            etag=f'"{hashlib.md5(data).hexdigest()}"',
        )
        self._bucket(bucket_name).objects[object_name] = obj

        logger.debug(
            "Stored object in mock storage",
            extra={"object_name": object_name, "size_bytes": len(data)}
        )

        return obj

    async def delete_bucket(self, bucket_name: str) -> None:
        await self._request(RequestPriority.ADMINISTRATIVE, self._delete_bucket, bucket_name)

    def _delete_bucket(self, bucket_name: str) -> None:
        if self._bucket(bucket_name).objects:
            raise StorageError(f"Bucket not empty: {bucket_name}")
        del self._buckets[bucket_name]

    def close(self) -> None:
        pass
