"""
CDN facade: one bucket, one client, one scheduler.

Everything above the storage layer talks to object storage through this
class. It binds the configured bucket, fills in content types and
default metadata, and owns the client's lifetime.
"""

import io
import logging
import mimetypes
import tempfile
from datetime import datetime, timezone
from typing import Optional

import httpx

from ...core.storage.models import ListedItem, UploadedObject
from .client import CdnConfig, ObjectStorageClient, StorageDisposedError
from .factory import create_storage_client
from .policies import build_public_read_policy

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Downloads larger than this spill from memory to disk
SPOOL_MAX_SIZE = 10 * 1024 * 1024


def get_content_type(object_name: str) -> str:
    content_type, _ = mimetypes.guess_type(object_name)
    return content_type or DEFAULT_CONTENT_TYPE


def default_metadata(metadata: Optional[dict[str, str]] = None) -> dict[str, str]:
    return {"created-on": datetime.now(timezone.utc).isoformat(), **(metadata or {})}


def normalize_object_name(object_name: str) -> str:
    return object_name.replace("\\", "/")


class Cdn:
    """
    Object storage for a single bucket.

    Example:
        cdn = Cdn(settings.cdn_config())
        await cdn.upload_object("media-library/logo.png", "/tmp/logo.png")
        url = cdn.get_object_url("media-library/logo.png")
        await cdn.dispose()
    """

    def __init__(
        self,
        config: CdnConfig,
        client: Optional[ObjectStorageClient] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            config: Bucket, endpoint and credentials
            client: Pre-built storage client; selected from `config` if omitted
            http_transport: Transport for URL downloads (tests pass a mock)
        """
        self._config = config
        self._client: Optional[ObjectStorageClient] = client or create_storage_client(config)
        self._http_transport = http_transport

        logger.info(
            "Initialized CDN",
            extra={"bucket": config.bucket_name, "mock_mode": config.mock_mode}
        )

    @property
    def bucket_name(self) -> str:
        return self._config.bucket_name

    @property
    def root_url(self) -> str:
        return self._config.root_url

    @property
    def is_disposed(self) -> bool:
        return self._client is None

    def _require_client(self) -> ObjectStorageClient:
        if self._client is None:
            raise StorageDisposedError("CDN has been disposed")
        return self._client

    # -----------------------------------------------------------------------
    # Uploads
    # -----------------------------------------------------------------------

    async def upload_object(
        self,
        object_name: str,
        file_path: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadedObject:
        """Upload a local file; content type is inferred from its extension."""
        client = self._require_client()
        object_name = normalize_object_name(object_name)

        with open(file_path, "rb") as stream:
            uploaded = await client.upload(
                self.bucket_name,
                object_name,
                stream,
                get_content_type(object_name),
                default_metadata(metadata),
            )

        logger.debug("Uploaded object", extra={"object_name": object_name})
        return uploaded

    async def upload_object_from_url(
        self,
        object_name: str,
        url: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> Optional[UploadedObject]:
        """
        Copy a remote resource into the bucket.

        A missing source (404) is logged and skipped; any other HTTP error
        is raised.
        """
        client = self._require_client()
        object_name = normalize_object_name(object_name)

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as buffer:
            async with httpx.AsyncClient(transport=self._http_transport, follow_redirects=True) as http:
                async with http.stream("GET", url) as response:
                    if response.status_code == httpx.codes.NOT_FOUND:
                        logger.warning(
                            "Source not found, skipping upload",
                            extra={"url": url, "object_name": object_name}
                        )
                        return None

                    response.raise_for_status()
                    async for chunk in response.aiter_bytes():
                        buffer.write(chunk)

            buffer.seek(0)
            return await client.upload(
                self.bucket_name,
                object_name,
                buffer,
                get_content_type(object_name),
                default_metadata(metadata),
            )

    async def upload_empty_object(self, object_name: str) -> UploadedObject:
        client = self._require_client()
        object_name = normalize_object_name(object_name)
        return await client.upload(
            self.bucket_name,
            object_name,
            b"",
            get_content_type(object_name),
            default_metadata(),
        )

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get_object(self, object_name: str) -> bytes:
        return await self._require_client().get_object(self.bucket_name, object_name)

    async def get_object_as_buffer(self, object_name: str) -> io.BytesIO:
        return io.BytesIO(await self.get_object(object_name))

    async def get_object_as_string(self, object_name: str, encoding: str = "utf-8") -> str:
        return (await self.get_object(object_name)).decode(encoding)

    async def list_objects(self, prefix: str = "", recursive: bool = False) -> list[ListedItem]:
        return await self._require_client().list_objects(self.bucket_name, prefix, recursive)

    async def object_exists(self, object_name: str) -> bool:
        return await self._require_client().object_exists(self.bucket_name, object_name)

    def get_object_url(self, object_name: str) -> str:
        return f"{self.root_url.rstrip('/')}/{object_name}"

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    async def delete_object(self, object_name: str) -> None:
        await self._require_client().delete_object(self.bucket_name, object_name)

    async def delete_objects(self, object_names: list[str]) -> None:
        if not object_names:
            return
        await self._require_client().delete_objects(self.bucket_name, object_names)

    async def copy_object(self, source_name: str, target_name: str) -> None:
        """Server-side copy; the target gets fresh metadata."""
        target_name = normalize_object_name(target_name)
        await self._require_client().copy_object(
            self.bucket_name,
            source_name,
            target_name,
            get_content_type(target_name),
            default_metadata(),
        )

    async def ensure_bucket(self, public_read: bool = False) -> bool:
        """
        Create the bucket if it doesn't exist yet.

        Returns:
            True if the bucket was created
        """
        client = self._require_client()
        existing = {bucket.name for bucket in await client.list_buckets()}

        created = self.bucket_name not in existing
        if created:
            await client.create_bucket(self.bucket_name, self._config.region)
            logger.info("Created bucket", extra={"bucket": self.bucket_name})

        if public_read:
            await client.put_bucket_policy(self.bucket_name, build_public_read_policy(self.bucket_name))
            logger.info("Applied public read policy", extra={"bucket": self.bucket_name})

        return created

    # -----------------------------------------------------------------------
    # Lifetime
    # -----------------------------------------------------------------------

    async def dispose(self) -> None:
        """Wait for in-flight requests, then release the client."""
        if self._client is None:
            logger.debug("CDN already disposed")
            return

        # Detach before waiting; concurrent calls then see a disposed CDN
        client, self._client = self._client, None
        await client.scheduler.join()
        client.close()

        logger.info("Disposed CDN", extra={"bucket": self.bucket_name})
