"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables (or `.env`) with
sensible defaults. Using Pydantic's BaseSettings means we get:
- Type validation at startup
- Documentation of what's required vs optional

Mock mode enables local development without object storage.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.scheduling import DEFAULT_MAX_CONCURRENCY
from ..infrastructure.storage.client import CdnConfig


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables, e.g.
    STORAGE_BUCKET_NAME=media-prod.
    """

    # Object storage
    storage_endpoint: str = Field(
        default="",
        description="S3 endpoint host or URL. Hosts ending in amazonaws.com use the AWS backend."
    )
    storage_region: str = Field(
        default="us-east-1",
        description="Region passed to the SDK and used when creating the bucket"
    )
    storage_access_key: str = Field(
        default="",
        description="Access key id"
    )
    storage_secret_key: str = Field(
        default="",
        description="Secret access key"
    )
    storage_bucket_name: str = Field(
        default="cdn",
        description="Bucket holding all public and private media"
    )
    storage_root_url: str = Field(
        default="",
        description="Public base URL of the bucket; object URLs are root_url + '/' + key"
    )
    storage_max_concurrency: int = Field(
        default=DEFAULT_MAX_CONCURRENCY,
        ge=1,
        description="Maximum number of storage requests in flight per client"
    )
    storage_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real object storage"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode.

        Returns list of missing required fields.
        """
        missing = []

        if not self.storage_bucket_name:
            missing.append("STORAGE_BUCKET_NAME")

        if not self.storage_mock_mode:
            if not self.storage_endpoint:
                missing.append("STORAGE_ENDPOINT")
            if not self.storage_access_key:
                missing.append("STORAGE_ACCESS_KEY")
            if not self.storage_secret_key:
                missing.append("STORAGE_SECRET_KEY")
            if not self.storage_root_url:
                missing.append("STORAGE_ROOT_URL")

        return missing

    def cdn_config(self) -> CdnConfig:
        return CdnConfig(
            endpoint=self.storage_endpoint,
            region=self.storage_region,
            access_key=self.storage_access_key,
            secret_key=self.storage_secret_key,
            bucket_name=self.storage_bucket_name,
            root_url=self.storage_root_url,
            max_concurrency=self.storage_max_concurrency,
            mock_mode=self.storage_mock_mode,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    For tests, call get_settings.cache_clear() to reset.
    """
    return Settings()
