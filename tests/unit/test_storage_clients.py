"""
Unit tests for the storage client backends.

The SDK objects are replaced with MagicMocks after construction, so no
request ever leaves the process. What's tested is the translation layer:
pagination, not-found handling, chunked deletes and ETag normalization.
"""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from minio.error import S3Error

from src.core.scheduling import TaskScheduler
from src.core.storage.models import CommonPrefix, StorageObject
from src.infrastructure.storage.aws_client import AwsStorageClient
from src.infrastructure.storage.client import (
    BatchDeleteError,
    CdnConfig,
    RequestPriority,
    endpoint_host,
    endpoint_url,
    split_into_chunks,
    unescape_etag,
)
from src.infrastructure.storage.factory import create_storage_client, is_aws_endpoint
from src.infrastructure.storage.mock_client import MockStorageClient
from src.infrastructure.storage.s3_compatible_client import S3CompatibleStorageClient

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_config(endpoint: str, mock_mode: bool = False) -> CdnConfig:
    return CdnConfig(
        endpoint=endpoint,
        region="eu-central-1",
        access_key="access",
        secret_key="secret",
        bucket_name="cdn",
        root_url="https://cdn.example.com",
        max_concurrency=10,
        mock_mode=mock_mode,
    )


def client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": "error"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "HeadObject",
    )


def s3_error(code: str, status: int) -> S3Error:
    return S3Error(
        code=code,
        message="error",
        resource="/cdn/key",
        request_id="req",
        host_id="host",
        response=MagicMock(status=status),
    )


@pytest.fixture
def aws_client():
    client = AwsStorageClient(make_config("s3.eu-central-1.amazonaws.com"))
    client._s3 = MagicMock()
    return client


@pytest.fixture
def minio_client():
    client = S3CompatibleStorageClient(make_config("http://localhost:9000"))
    client._minio = MagicMock()
    return client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestUnescapeEtag:
    """Backends quote ETags in different ways."""

    @pytest.mark.parametrize("raw", ['"abc123"', "&quot;abc123&quot;", "&#34;abc123&#34;", "abc123"])
    def test_strips_quotes(self, raw):
        assert unescape_etag(raw) == "abc123"

    def test_none_stays_none(self):
        assert unescape_etag(None) is None

    def test_inner_quotes_are_kept(self):
        assert unescape_etag('"a"b"') == 'a"b'


class TestEndpointHelpers:

    def test_bare_host_defaults_to_https(self):
        assert endpoint_url("minio.local:9000") == "https://minio.local:9000"

    def test_explicit_scheme_is_kept(self):
        assert endpoint_url("http://localhost:9000/") == "http://localhost:9000"

    def test_host_includes_port(self):
        assert endpoint_host("http://localhost:9000") == "localhost:9000"

    def test_chunks_keep_order(self):
        assert split_into_chunks([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]


class TestFactory:
    """Backend selection from configuration."""

    @pytest.mark.parametrize("endpoint", ["s3.amazonaws.com", "https://s3.eu-central-1.amazonaws.com"])
    def test_aws_hosts(self, endpoint):
        assert is_aws_endpoint(endpoint)

    @pytest.mark.parametrize("endpoint", ["localhost:9000", "https://abc.r2.cloudflarestorage.com", "notamazonaws.com"])
    def test_other_hosts(self, endpoint):
        assert not is_aws_endpoint(endpoint)

    def test_mock_mode_wins(self):
        client = create_storage_client(make_config("s3.amazonaws.com", mock_mode=True))
        assert isinstance(client, MockStorageClient)

    def test_aws_endpoint_selects_boto3_backend(self):
        assert isinstance(create_storage_client(make_config("s3.amazonaws.com")), AwsStorageClient)

    def test_other_endpoint_selects_minio_backend(self):
        client = create_storage_client(make_config("http://localhost:9000"))
        assert isinstance(client, S3CompatibleStorageClient)

    def test_missing_endpoint_is_rejected(self):
        with pytest.raises(ValueError, match="endpoint"):
            create_storage_client(make_config(""))

    def test_concurrency_is_passed_to_scheduler(self):
        client = create_storage_client(make_config("", mock_mode=True))
        assert client.scheduler.max_concurrency == 10


# ---------------------------------------------------------------------------
# AWS backend
# ---------------------------------------------------------------------------

class TestAwsListObjects:
    """Marker pagination over list_objects."""

    @pytest.mark.asyncio
    async def test_pages_until_not_truncated(self, aws_client):
        aws_client._s3.list_objects.side_effect = [
            {
                "IsTruncated": True,
                "Contents": [
                    {"Key": "media/a.png", "LastModified": NOW, "ETag": '"e1"', "Size": 1},
                    {"Key": "media/b.png", "LastModified": NOW, "ETag": '"e2"', "Size": 2},
                ],
            },
            {
                "IsTruncated": False,
                "Contents": [{"Key": "media/c.png", "LastModified": NOW, "ETag": "&quot;e3&quot;", "Size": 3}],
            },
        ]

        objects = await aws_client.list_objects("cdn", "media/", recursive=True)

        assert [obj.name for obj in objects] == ["media/a.png", "media/b.png", "media/c.png"]
        assert [obj.etag for obj in objects] == ["e1", "e2", "e3"]

        first_call, second_call = aws_client._s3.list_objects.call_args_list
        assert first_call.kwargs["Marker"] == ""
        assert second_call.kwargs["Marker"] == "media/b.png"
        assert "Delimiter" not in first_call.kwargs

    @pytest.mark.asyncio
    async def test_non_recursive_uses_delimiter_and_next_marker(self, aws_client):
        aws_client._s3.list_objects.side_effect = [
            {
                "IsTruncated": True,
                "NextMarker": "media/docs/",
                "Contents": [{"Key": "media/a.png", "LastModified": NOW, "ETag": '"e1"', "Size": 1}],
                "CommonPrefixes": [{"Prefix": "media/docs/"}],
            },
            {
                "IsTruncated": False,
                "CommonPrefixes": [{"Prefix": "media/docs/"}, {"Prefix": "media/images/"}],
            },
        ]

        items = await aws_client.list_objects("cdn", "media/", recursive=False)

        assert items == [
            StorageObject(name="media/a.png", last_modified=NOW, etag="e1", size=1),
            CommonPrefix(prefix="media/docs/"),
            CommonPrefix(prefix="media/images/"),
        ]
        second_call = aws_client._s3.list_objects.call_args_list[1]
        assert second_call.kwargs["Delimiter"] == "/"
        assert second_call.kwargs["Marker"] == "media/docs/"


class TestAwsObjectExists:
    """Existence is a head_object call; not-found is False, everything else raises."""

    @pytest.mark.asyncio
    async def test_existing_object(self, aws_client):
        aws_client._s3.head_object.return_value = {"ETag": '"e1"'}
        assert await aws_client.object_exists("cdn", "media/a.png") is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
    async def test_not_found_returns_false(self, aws_client, code):
        aws_client._s3.head_object.side_effect = client_error(code, 404)
        assert await aws_client.object_exists("cdn", "media/a.png") is False

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, aws_client):
        aws_client._s3.head_object.side_effect = client_error("AccessDenied", 403)
        with pytest.raises(ClientError):
            await aws_client.object_exists("cdn", "media/a.png")


class TestAwsDeleteObjects:
    """Batch deletes are chunked and failures aggregated."""

    @pytest.mark.asyncio
    async def test_2500_names_issue_three_batches(self, aws_client):
        aws_client._s3.delete_objects.return_value = {}
        names = [f"media/{i:04d}" for i in range(2500)]

        await aws_client.delete_objects("cdn", names)

        sizes = sorted(
            len(call.kwargs["Delete"]["Objects"])
            for call in aws_client._s3.delete_objects.call_args_list
        )
        assert sizes == [500, 1000, 1000]

    @pytest.mark.asyncio
    async def test_failures_from_all_chunks_are_reported(self, aws_client):
        names = [f"media/{i:04d}" for i in range(1500)]

        def delete_objects(Bucket, Delete):
            keys = [obj["Key"] for obj in Delete["Objects"]]
            if keys[0] == "media/0000":
                return {"Errors": [{"Key": "media/0007", "Code": "AccessDenied"}]}
            raise RuntimeError("connection reset")

        aws_client._s3.delete_objects.side_effect = delete_objects

        with pytest.raises(BatchDeleteError) as exc_info:
            await aws_client.delete_objects("cdn", names)

        error = exc_info.value
        assert error.failed_object_names == ["media/0007", *names[1000:]]
        assert len(error.causes) == 1
        assert isinstance(error.causes[0], RuntimeError)
        assert str(error).startswith("CDN Error. Could not delete following objects:\nmedia/0007\n")


class TestAwsBuckets:

    @pytest.mark.asyncio
    async def test_us_east_1_has_no_location_constraint(self, aws_client):
        await aws_client.create_bucket("cdn", "us-east-1")
        aws_client._s3.create_bucket.assert_called_once_with(Bucket="cdn")

    @pytest.mark.asyncio
    async def test_other_regions_set_location_constraint(self, aws_client):
        await aws_client.create_bucket("cdn", "eu-central-1")
        aws_client._s3.create_bucket.assert_called_once_with(
            Bucket="cdn",
            CreateBucketConfiguration={"LocationConstraint": "eu-central-1"},
        )

    @pytest.mark.asyncio
    async def test_dict_policy_is_serialized(self, aws_client):
        await aws_client.put_bucket_policy("cdn", {"Version": "2012-10-17"})
        aws_client._s3.put_bucket_policy.assert_called_once_with(Bucket="cdn", Policy='{"Version": "2012-10-17"}')


class TestAwsUpload:

    @pytest.mark.asyncio
    async def test_upload_reads_etag_from_head(self, aws_client):
        aws_client._s3.head_object.return_value = {"ETag": '"abc123"'}

        uploaded = await aws_client.upload("cdn", "media/a.txt", b"hello", "text/plain", {"created-on": "x"})

        assert uploaded.name == "media/a.txt"
        assert uploaded.etag == "abc123"
        args, kwargs = aws_client._s3.upload_fileobj.call_args
        assert args[0].read() == b"hello"
        assert args[1:] == ("cdn", "media/a.txt")
        assert kwargs["ExtraArgs"] == {"ContentType": "text/plain", "Metadata": {"created-on": "x"}}


# ---------------------------------------------------------------------------
# S3-compatible backend
# ---------------------------------------------------------------------------

class TestS3CompatibleClient:
    """MinIO SDK translation."""

    @pytest.mark.asyncio
    async def test_list_maps_directories_to_common_prefixes(self, minio_client):
        minio_client._minio.list_objects.return_value = iter([
            SimpleNamespace(object_name="media/a.png", is_dir=False, last_modified=NOW, etag='"e1"', size=4),
            SimpleNamespace(object_name="media/docs/", is_dir=True, last_modified=None, etag=None, size=None),
        ])

        items = await minio_client.list_objects("cdn", "media/", recursive=False)

        assert items == [
            StorageObject(name="media/a.png", last_modified=NOW, etag="e1", size=4),
            CommonPrefix(prefix="media/docs/"),
        ]
        minio_client._minio.list_objects.assert_called_once_with(bucket_name="cdn", prefix="media/", recursive=False)

    @pytest.mark.asyncio
    async def test_not_found_returns_false(self, minio_client):
        minio_client._minio.stat_object.side_effect = s3_error("NoSuchKey", 404)
        assert await minio_client.object_exists("cdn", "media/a.png") is False

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, minio_client):
        minio_client._minio.stat_object.side_effect = s3_error("AccessDenied", 403)
        with pytest.raises(S3Error):
            await minio_client.object_exists("cdn", "media/a.png")

    @pytest.mark.asyncio
    async def test_delete_errors_are_aggregated(self, minio_client):
        minio_client._minio.remove_objects.return_value = iter([SimpleNamespace(name="media/b.png")])

        with pytest.raises(BatchDeleteError) as exc_info:
            await minio_client.delete_objects("cdn", ["media/a.png", "media/b.png"])

        assert exc_info.value.failed_object_names == ["media/b.png"]

    @pytest.mark.asyncio
    async def test_upload_uses_unknown_length_multipart(self, minio_client):
        minio_client._minio.put_object.return_value = SimpleNamespace(object_name="media/a.txt", etag='"abc123"')

        uploaded = await minio_client.upload("cdn", "media/a.txt", b"hello", "text/plain")

        assert uploaded.etag == "abc123"
        kwargs = minio_client._minio.put_object.call_args.kwargs
        assert kwargs["length"] == -1
        assert kwargs["part_size"] == 10 * 1024 * 1024
        assert kwargs["data"].read() == b"hello"

    @pytest.mark.asyncio
    async def test_get_object_releases_connection(self, minio_client):
        response = MagicMock()
        response.read.return_value = b"data"
        minio_client._minio.get_object.return_value = response

        assert await minio_client.get_object("cdn", "media/a.txt") == b"data"
        response.close.assert_called_once()
        response.release_conn.assert_called_once()


# ---------------------------------------------------------------------------
# Request priorities
# ---------------------------------------------------------------------------

ADMIN = RequestPriority.ADMINISTRATIVE
DOWNLOAD = RequestPriority.DOWNLOAD
UPLOAD = RequestPriority.UPLOAD

OPERATION_PRIORITIES = [
    ("create_bucket", lambda c: c.create_bucket("cdn", "eu-central-1"), ADMIN),
    ("put_bucket_policy", lambda c: c.put_bucket_policy("cdn", "{}"), ADMIN),
    ("list_buckets", lambda c: c.list_buckets(), ADMIN),
    ("list_objects", lambda c: c.list_objects("cdn", "media/", recursive=True), DOWNLOAD),
    ("get_object", lambda c: c.get_object("cdn", "media/a.txt"), DOWNLOAD),
    ("object_exists", lambda c: c.object_exists("cdn", "media/a.txt"), DOWNLOAD),
    ("delete_object", lambda c: c.delete_object("cdn", "media/a.txt"), ADMIN),
    ("delete_objects", lambda c: c.delete_objects("cdn", ["media/a.txt"]), ADMIN),
    ("copy_object", lambda c: c.copy_object("cdn", "media/a.txt", "media/b.txt", "text/plain"), ADMIN),
    ("upload", lambda c: c.upload("cdn", "media/a.txt", b"a", "text/plain"), UPLOAD),
    ("delete_bucket", lambda c: c.delete_bucket("cdn"), ADMIN),
]


def record_priorities(client) -> list[int]:
    """Wrap the client's scheduler so every submitted priority is kept."""
    priorities = []
    submit = client.scheduler.submit

    async def recording_submit(operation, priority=0):
        priorities.append(priority)
        return await submit(operation, priority)

    client.scheduler.submit = recording_submit
    return priorities


def stub_aws_responses(client) -> None:
    client._s3.list_objects.return_value = {"IsTruncated": False}
    client._s3.list_buckets.return_value = {"Buckets": []}
    client._s3.delete_objects.return_value = {}
    client._s3.head_object.return_value = {"ETag": '"e1"'}
    client._s3.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"a"))}


def stub_minio_responses(client) -> None:
    client._minio.list_objects.return_value = iter([])
    client._minio.list_buckets.return_value = []
    client._minio.remove_objects.return_value = iter([])
    client._minio.put_object.return_value = SimpleNamespace(object_name="media/a.txt", etag='"e1"')
    client._minio.get_object.return_value = MagicMock(read=MagicMock(return_value=b"a"))


class TestRequestPriorities:
    """Every backend operation is scheduled in its priority band."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, call, expected", OPERATION_PRIORITIES, ids=[op[0] for op in OPERATION_PRIORITIES])
    async def test_aws_operation_priority(self, aws_client, name, call, expected):
        stub_aws_responses(aws_client)
        priorities = record_priorities(aws_client)

        await call(aws_client)

        assert priorities == [expected]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, call, expected", OPERATION_PRIORITIES, ids=[op[0] for op in OPERATION_PRIORITIES])
    async def test_s3_compatible_operation_priority(self, minio_client, name, call, expected):
        stub_minio_responses(minio_client)
        priorities = record_priorities(minio_client)

        await call(minio_client)

        assert priorities == [expected]

    @pytest.mark.asyncio
    async def test_saturated_client_starts_admin_then_download_then_upload(self, aws_client):
        stub_aws_responses(aws_client)
        aws_client._scheduler = TaskScheduler(1)
        started = []
        aws_client._s3.upload_fileobj.side_effect = lambda *args, **kwargs: started.append("upload")
        aws_client._s3.head_object.side_effect = lambda **kwargs: started.append("head") or {"ETag": '"e1"'}
        aws_client._s3.delete_object.side_effect = lambda **kwargs: started.append("delete")

        gate = asyncio.Event()

        async def blocker():
            await gate.wait()

        blocking = asyncio.create_task(aws_client.scheduler.submit(blocker))
        for _ in range(5):
            await asyncio.sleep(0)

        waiting = [
            asyncio.create_task(aws_client.upload("cdn", "media/a.txt", b"a", "text/plain")),
            asyncio.create_task(aws_client.object_exists("cdn", "media/a.txt")),
            asyncio.create_task(aws_client.delete_object("cdn", "media/a.txt")),
        ]
        for _ in range(5):
            await asyncio.sleep(0)
        assert aws_client.scheduler.pending_count == 3

        gate.set()
        await asyncio.gather(blocking, *waiting)

        # upload's own ETag lookup follows upload_fileobj inside the same slot
        assert started == ["delete", "head", "upload", "head"]


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class TestMockStorageClient:
    """The mock mirrors S3 listing and error behavior."""

    @pytest.mark.asyncio
    async def test_non_recursive_listing_groups_by_slash(self):
        client = MockStorageClient(buckets=["cdn"])
        for name in ["media/a.txt", "media/docs/b.txt", "media/docs/c.txt", "other/d.txt"]:
            await client.upload("cdn", name, b"x", "text/plain")

        items = await client.list_objects("cdn", "media/", recursive=False)

        assert [getattr(item, "name", None) for item in items] == ["media/a.txt", None]
        assert items[1] == CommonPrefix(prefix="media/docs/")

        recursive = await client.list_objects("cdn", "media/", recursive=True)
        assert [item.name for item in recursive] == ["media/a.txt", "media/docs/b.txt", "media/docs/c.txt"]

    @pytest.mark.asyncio
    async def test_etag_is_unquoted_md5(self):
        client = MockStorageClient(buckets=["cdn"])
        uploaded = await client.upload("cdn", "media/a.txt", b"hello", "text/plain")
        assert uploaded.etag == "5d41402abc4b2a76b9719d911017c592"

    @pytest.mark.asyncio
    async def test_missing_bucket_raises(self):
        from src.infrastructure.storage.client import StorageError

        client = MockStorageClient()
        with pytest.raises(StorageError, match="Bucket not found"):
            await client.list_objects("cdn", "", recursive=True)
