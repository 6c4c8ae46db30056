"""
AWS S3 backend built on boto3.

Used when the configured endpoint is an AWS host. Listings page through
`list_objects` with markers, existence checks use `head_object`, and
uploads go through boto3's managed transfer so large bodies are sent in
parts.
"""

import io
import json
import logging
from functools import partial
from typing import Optional, Union

from ...core.storage.models import BucketInfo, CommonPrefix, ListedItem, StorageObject, UploadedObject
from .client import (
    MAX_LIST_PAGE_SIZE,
    UPLOAD_PART_SIZE,
    Body,
    CdnConfig,
    RequestPriority,
    ScheduledStorageClient,
    endpoint_url,
    unescape_etag,
)

logger = logging.getLogger(__name__)

# Buckets in this region must be created without a location constraint
DEFAULT_AWS_REGION = "us-east-1"

NOT_FOUND_ERROR_CODES = ("404", "NoSuchKey", "NotFound", "NoSuchBucket")


class AwsStorageClient(ScheduledStorageClient):
    """
    S3 client for AWS endpoints.

    boto3 is imported in the constructor because mock mode and
    S3-compatible deployments don't need it.
    """

    def __init__(self, config: CdnConfig) -> None:
        try:
            import boto3
            from boto3.s3.transfer import TransferConfig
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for AWS storage. Install with: pip install boto3"
            )

        super().__init__(config.max_concurrency)

        self._s3 = boto3.client(
            "s3",
            endpoint_url=endpoint_url(config.endpoint),
            region_name=config.region,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            config=Config(signature_version="s3v4"),
        )

        # Parts are sent one after another; concurrency is bounded by the
        # scheduler, not by boto3's transfer threads
        self._transfer_config = TransferConfig(
            multipart_threshold=UPLOAD_PART_SIZE,
            multipart_chunksize=UPLOAD_PART_SIZE,
            use_threads=False,
        )

        logger.info(
            "Initialized AWS storage client",
            extra={"endpoint": config.endpoint, "region": config.region}
        )

    async def create_bucket(self, bucket_name: str, region: str) -> None:
        params = {"Bucket": bucket_name}
        if region and region != DEFAULT_AWS_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}

        await self._request(RequestPriority.ADMINISTRATIVE, self._s3.create_bucket, **params)

    async def put_bucket_policy(self, bucket_name: str, policy: Union[dict, str]) -> None:
        policy_json = policy if isinstance(policy, str) else json.dumps(policy)
        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._s3.put_bucket_policy,
            Bucket=bucket_name,
            Policy=policy_json,
        )

    async def list_buckets(self) -> list[BucketInfo]:
        response = await self._request(RequestPriority.ADMINISTRATIVE, self._s3.list_buckets)
        return [
            BucketInfo(name=bucket["Name"], creation_date=bucket.get("CreationDate"))
            for bucket in response.get("Buckets", [])
        ]

    async def list_objects(self, bucket_name: str, prefix: str, recursive: bool) -> list[ListedItem]:
        """
        List all keys below `prefix`, one scheduled request per page.

        Non-recursive listings use '/' as delimiter, so deeper keys come
        back as common prefixes.
        """
        params = {
            "Bucket": bucket_name,
            "Prefix": prefix,
            "MaxKeys": MAX_LIST_PAGE_SIZE,
        }
        if not recursive:
            params["Delimiter"] = "/"

        contents: list[dict] = []
        common_prefixes: dict[str, None] = {}
        marker = ""

        while True:
            response = await self._request(
                RequestPriority.DOWNLOAD,
                self._s3.list_objects,
                **params,
                Marker=marker,
            )

            page_contents = response.get("Contents", [])
            page_prefixes = [item["Prefix"] for item in response.get("CommonPrefixes", [])]

            contents.extend(page_contents)
            common_prefixes.update(dict.fromkeys(page_prefixes))

            if not response.get("IsTruncated"):
                break

            # NextMarker is only returned when a delimiter is used
            page_keys = [obj["Key"] for obj in page_contents] + page_prefixes
            marker = response.get("NextMarker") or (max(page_keys) if page_keys else "")
            if not marker:
                break

        objects: list[ListedItem] = [
            StorageObject(
                name=obj["Key"],
                last_modified=obj.get("LastModified"),
                etag=unescape_etag(obj.get("ETag")),
                size=obj.get("Size", 0),
            )
            for obj in contents
        ]
        objects.extend(CommonPrefix(prefix=common_prefix) for common_prefix in common_prefixes)

        return objects

    async def get_object(self, bucket_name: str, object_name: str) -> bytes:
        return await self._request(RequestPriority.DOWNLOAD, self._read_object, bucket_name, object_name)

    def _read_object(self, bucket_name: str, object_name: str) -> bytes:
        response = self._s3.get_object(Bucket=bucket_name, Key=object_name)
        return response["Body"].read()

    async def object_exists(self, bucket_name: str, object_name: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            await self._request(
                RequestPriority.DOWNLOAD,
                self._s3.head_object,
                Bucket=bucket_name,
                Key=object_name,
            )
            return True
        except ClientError as exc:
            response = getattr(exc, "response", {}) or {}
            status_code = (response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
            error_code = str((response.get("Error") or {}).get("Code") or "")
            if status_code == 404 or error_code in NOT_FOUND_ERROR_CODES:
                return False
            raise

    async def delete_object(self, bucket_name: str, object_name: str) -> None:
        await self._request(
            RequestPriority.ADMINISTRATIVE,
            self._s3.delete_object,
            Bucket=bucket_name,
            Key=object_name,
        )

    async def delete_objects(self, bucket_name: str, object_names: list[str]) -> None:
        await self._delete_in_chunks(object_names, partial(self._delete_chunk, bucket_name))

    def _delete_chunk(self, bucket_name: str, object_names: list[str]) -> list[str]:
        response = self._s3.delete_objects(
            Bucket=bucket_name,
            Delete={"Objects": [{"Key": name} for name in object_names]},
        )
        return [error["Key"] for error in response.get("Errors", [])]

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
            self._s3.copy_object,
            Bucket=bucket_name,
            Key=target_name,
            CopySource={"Bucket": bucket_name, "Key": source_name},
            ContentType=content_type,
            Metadata=metadata or {},
            MetadataDirective="REPLACE",
        )

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
        fileobj = io.BytesIO(stream) if isinstance(stream, (bytes, bytearray)) else stream
        self._s3.upload_fileobj(
            fileobj,
            bucket_name,
            object_name,
            ExtraArgs={"ContentType": content_type, "Metadata": metadata},
            Config=self._transfer_config,
        )

        # upload_fileobj doesn't return the ETag
        head = self._s3.head_object(Bucket=bucket_name, Key=object_name)
        return UploadedObject(name=object_name, etag=unescape_etag(head.get("ETag")))

    async def delete_bucket(self, bucket_name: str) -> None:
        await self._request(RequestPriority.ADMINISTRATIVE, self._s3.delete_bucket, Bucket=bucket_name)

    def close(self) -> None:
        self._s3.close()
