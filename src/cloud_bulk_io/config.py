"""Configuration management with Pydantic Settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class HttpSettings(BaseSettings):
    """Request execution configuration."""

    max_retries: int = Field(default=5, ge=0, validation_alias="BULKIO_MAX_RETRIES")
    retry_delay_start: float = Field(
        default=0.05, ge=0, validation_alias="BULKIO_RETRY_DELAY_START"
    )
    max_redirects: int = Field(default=5, ge=0, validation_alias="BULKIO_MAX_REDIRECTS")
    connection_timeout: float = Field(
        default=60.0, gt=0, validation_alias="BULKIO_CONNECTION_TIMEOUT"
    )
    socket_timeout: float = Field(default=60.0, gt=0, validation_alias="BULKIO_SOCKET_TIMEOUT")
    trust_all_certs: bool = Field(default=False, validation_alias="BULKIO_TRUST_ALL_CERTS")
    wire_log: bool = Field(default=False, validation_alias="BULKIO_WIRE_LOG")
    user_agent: Optional[str] = Field(default=None, validation_alias="BULKIO_USER_AGENT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class BlobStoreSettings(BaseSettings):
    """Bulk operation and multipart configuration."""

    user_threads: int = Field(default=16, gt=0, validation_alias="BULKIO_USER_THREADS")
    max_parallel_deletes: int = Field(
        default=100, gt=0, validation_alias="BULKIO_MAX_PARALLEL_DELETES"
    )
    request_timeout: Optional[float] = Field(
        default=None, gt=0, validation_alias="BULKIO_REQUEST_TIMEOUT"
    )
    max_errors: int = Field(default=3, gt=0, validation_alias="BULKIO_MAX_ERRORS")
    mpu_part_size: int = Field(default=32 * MIB, gt=0, validation_alias="BULKIO_MPU_PART_SIZE")
    mpu_magnitude_base: int = Field(
        default=100, gt=0, validation_alias="BULKIO_MPU_MAGNITUDE_BASE"
    )
    list_page_size: int = Field(default=1000, gt=0, validation_alias="BULKIO_LIST_PAGE_SIZE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class AppConfig(BaseSettings):
    """Application configuration."""

    log_file: Optional[str] = Field(default=None, validation_alias="LOG_FILE")
    verbose: bool = Field(default=False, validation_alias="VERBOSE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


def load_http_settings() -> HttpSettings:
    """Load request execution settings.

    Returns:
        Validated HTTP settings.

    Raises:
        ValidationError: If a value is out of range.
    """
    return HttpSettings()


def load_blobstore_settings() -> BlobStoreSettings:
    """Load bulk operation settings.

    Returns:
        Validated blobstore settings.

    Raises:
        ValidationError: If a value is out of range.
    """
    return BlobStoreSettings()


def load_app_config() -> AppConfig:
    """Load application configuration.

    Returns:
        Application configuration with defaults.
    """
    return AppConfig()
