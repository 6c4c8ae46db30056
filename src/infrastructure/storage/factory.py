"""
Backend selection for the CDN facade.
"""

import logging

from .client import CdnConfig, ObjectStorageClient, endpoint_host

logger = logging.getLogger(__name__)

AWS_HOST_SUFFIX = "amazonaws.com"


def is_aws_endpoint(endpoint: str) -> bool:
    host = endpoint_host(endpoint).split(":", 1)[0].lower()
    return host == AWS_HOST_SUFFIX or host.endswith(f".{AWS_HOST_SUFFIX}")


def create_storage_client(config: CdnConfig) -> ObjectStorageClient:
    """
    Create the storage client for a configuration.

    Mock mode wins over everything else; otherwise AWS hosts get the
    boto3 backend and every other host the MinIO SDK backend.

    Args:
        config: CDN configuration

    Returns:
        ObjectStorageClient implementation (AWS, S3-compatible or Mock)
    """
    if config.mock_mode:
        from .mock_client import MockStorageClient

        return MockStorageClient(config.max_concurrency, buckets=[config.bucket_name])

    if not config.endpoint:
        raise ValueError("endpoint is required when not in mock mode")

    if is_aws_endpoint(config.endpoint):
        from .aws_client import AwsStorageClient

        logger.debug("Selected AWS storage backend", extra={"endpoint": config.endpoint})
        return AwsStorageClient(config)

    from .s3_compatible_client import S3CompatibleStorageClient

    logger.debug("Selected S3-compatible storage backend", extra={"endpoint": config.endpoint})
    return S3CompatibleStorageClient(config)
