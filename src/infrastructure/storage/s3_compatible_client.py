"""
Generic S3-compatible backend built on the MinIO SDK.

Used for every endpoint that is not AWS: self-hosted MinIO, Ceph,
Cloudflare R2 and similar. The SDK enumerates listings as an iterator
(paging happens inside it), existence checks use `stat_object`, and
batch deletes report failures through a lazy iterator that has to be
drained for the request to be sent at all.
"""

import io
import json
import logging
from functools import partial
from typing import Optional, Union
from urllib.parse import urlsplit

from ...core.storage.models import BucketInfo, CommonPrefix, ListedItem, StorageObject, UploadedObject
from .client import (
    UPLOAD_PART_SIZE,
    Body,
    CdnConfig,
    RequestPriority,
    ScheduledStorageClient,
    endpoint_url,
    unescape_etag,
)

logger = logging.getLogger(__name__)

NOT_FOUND_ERROR_CODES = ("NoSuchKey", "NoSuchObject", "NoSuchBucket", "ResourceNotFound", "NotFound")


class S3CompatibleStorageClient(ScheduledStorageClient):
    """S3 client for non-AWS endpoints, always path-style."""

    def __init__(self, config: CdnConfig) -> None:
        try:
            from minio import Minio
        except ImportError:
            raise ImportError(
                "minio is required for S3-compatible storage. Install with: pip install minio"
            )

        super().__init__(config.max_concurrency)

        url = urlsplit(endpoint_url(config.endpoint))
        self._minio = Minio(
            url.netloc,
            access_key=config.access_key,
            secret_key=config.secret_key,
            region=config.region or None,
            secure=url.scheme == "https",
        )

        logger.info(
            "Initialized S3-compatible storage client",
            extra={"endpoint": config.endpoint, "region": config.region}
        )

    async def create_bucket(self, bucket_name: str, region: str) -> None:
        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._minio.make_bucket,
            bucket_name=bucket_name,
            location=region or None,
        )

    async def put_bucket_policy(self, bucket_name: str, policy: Union[dict, str]) -> None:
        policy_json = policy if isinstance(policy, str) else json.dumps(policy)
        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._minio.set_bucket_policy,
            bucket_name=bucket_name,
            policy=policy_json,
        )

    async def list_buckets(self) -> list[BucketInfo]:
        buckets = await self._request(RequestPriority.ADMINISTRATIVE, self._minio.list_buckets)
        return [BucketInfo(name=bucket.name, creation_date=bucket.creation_date) for bucket in buckets]

    async def list_objects(self, bucket_name: str, prefix: str, recursive: bool) -> list[ListedItem]:
        """
        Drain the SDK's object iterator inside a single scheduled request.

        The iterator fetches further pages lazily, so it must be consumed
        in the worker thread, never on the event loop.
        """
        entries = await self._request(
            RequestPriority.DOWNLOAD,
            self._collect_objects,
            bucket_name,
            prefix,
            recursive,
        )

        objects: list[ListedItem] = []
        seen_prefixes: set[str] = set()
        for entry in entries:
            if entry.is_dir:
                if entry.object_name not in seen_prefixes:
                    seen_prefixes.add(entry.object_name)
                    objects.append(CommonPrefix(prefix=entry.object_name))
                continue

            objects.append(StorageObject(
                name=entry.object_name,
                last_modified=entry.last_modified,
                etag=unescape_etag(entry.etag),
                size=entry.size or 0,
            ))

        return objects

    def _collect_objects(self, bucket_name: str, prefix: str, recursive: bool) -> list:
        return list(self._minio.list_objects(bucket_name=bucket_name, prefix=prefix, recursive=recursive))

    async def get_object(self, bucket_name: str, object_name: str) -> bytes:
        return await self._request(RequestPriority.DOWNLOAD, self._read_object, bucket_name, object_name)

    def _read_object(self, bucket_name: str, object_name: str) -> bytes:
        response = self._minio.get_object(bucket_name=bucket_name, object_name=object_name)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    async def object_exists(self, bucket_name: str, object_name: str) -> bool:
        from minio.error import S3Error

        try:
            await self._request(
                RequestPriority.DOWNLOAD,
                self._minio.stat_object,
                bucket_name=bucket_name,
                object_name=object_name,
            )
            return True
        except S3Error as exc:
            status_code = getattr(exc.response, "status", None)
            if status_code == 404 or exc.code in NOT_FOUND_ERROR_CODES:
                return False
            raise

    async def delete_object(self, bucket_name: str, object_name: str) -> None:
        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._minio.remove_object,
            bucket_name=bucket_name,
            object_name=object_name,
        )

    async def delete_objects(self, bucket_name: str, object_names: list[str]) -> None:
        await self._delete_in_chunks(object_names, partial(self._delete_chunk, bucket_name))

    def _delete_chunk(self, bucket_name: str, object_names: list[str]) -> list[str]:
        from minio.deleteobjects import DeleteObject

        errors = self._minio.remove_objects(
            bucket_name=bucket_name,
            delete_object_list=[DeleteObject(name) for name in object_names],
        )
        return [error.name for error in errors]

    async def copy_object(
        self,
        bucket_name: str,
        source_name: str,
        target_name: str,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        from minio.commonconfig import REPLACE, CopySource

        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._minio.copy_object,
            bucket_name=bucket_name,
            object_name=target_name,
            source=CopySource(bucket_name, source_name),
            metadata={"Content-Type": content_type, **(metadata or {})},
            metadata_directive=REPLACE,
        )

    async def upload(
        self,
        bucket_name: str,
        object_name: str,
        stream: Body,
        content_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadedObject:
        data = io.BytesIO(stream) if isinstance(stream, (bytes, bytearray)) else stream

        # Unknown length makes the SDK upload in parts of `part_size`
        result = await self._request(
            RequestPriority.UPLOAD,
            self._minio.put_object,
            bucket_name=bucket_name,
            object_name=object_name,
            data=data,
            length=-1,
            content_type=content_type,
            metadata=metadata or {},
            part_size=UPLOAD_PART_SIZE,
        )

        return UploadedObject(name=result.object_name or object_name, etag=unescape_etag(result.etag))

    async def delete_bucket(self, bucket_name: str) -> None:
        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._minio.remove_bucket,
            bucket_name=bucket_name,
        )

    def close(self) -> None:
        # The SDK keeps a urllib3 pool that has no explicit close
        self._minio = None
