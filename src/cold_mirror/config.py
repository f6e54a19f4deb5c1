# src/cold_mirror/config.py
"""
Configuration for the cold-mirror pipelines.

This module centralizes all configuration, loading credentials and bucket
names from environment variables and providing typed, immutable dataclasses
that are built once at startup and passed explicitly to the pipelines.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from cold_mirror.exceptions import ConfigError

MIN_PART_SIZE: int = 5 * 1024**2
_TRUTHY: FrozenSet[str] = frozenset({"1", "true", "yes", "on"})


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _get_env_flag(name: str, default: bool = False) -> bool:
    """Reads a boolean environment variable such as 'true' or '0'."""
    value: Optional[str] = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class S3Config:
    """
    Represents the configuration for an S3-compatible endpoint.

    Attributes:
        endpoint_url (str): The S3 endpoint URL.
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        bucket (str): The bucket name.
        region (str): The region name.
        force_path_style (bool): Use path-style addressing instead of
            virtual-hosted buckets.
    """

    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str = "us-east-1"
    force_path_style: bool = False

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the configuration as a dictionary suitable for aiobotocore clients.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        return {
            "endpoint_url": self.endpoint_url,
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }

    def addressing_style(self) -> Dict[str, Any]:
        """Returns the botocore ``s3`` config section for this endpoint."""
        return {"addressing_style": "path" if self.force_path_style else "auto"}


@dataclass(frozen=True)
class WebhookConfig:
    """
    Where and how batch summaries are delivered.

    Attributes:
        url (str): The webhook endpoint receiving a plain-text POST.
        secret (str, optional): HMAC-SHA1 signing secret. No signature header
            is sent when unset.
        signature_header (str): Header name carrying the hex signature.
    """

    url: str
    secret: Optional[str] = None
    signature_header: str = "X-TRAQ-Signature"


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the application's operational parameters.

    Attributes:
        concurrency (int): Number of object transfers allowed in flight.
        full_backup (bool): Rewrite every object instead of skipping
            unchanged ones.
        read_chunk_size (int): Bytes requested per read from a source stream.
        list_page_size (int): Keys requested per listing page.
        part_size (int): Multipart part size; objects whose output fits in one
            part are written with a single PUT.
        max_attempts (int): Retry budget handed to the botocore client.
        create_archive_bucket (bool): Create the archive bucket when missing.
    """

    concurrency: int = 5
    full_backup: bool = False
    read_chunk_size: int = 1024**2
    part_size: int = 64 * 1024**2
    list_page_size: int = 1000
    max_attempts: int = 5
    create_archive_bucket: bool = True

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigError(
                f"Concurrency must be at least 1, got {self.concurrency}."
            )
        if self.list_page_size < 1:
            raise ConfigError("List page size must be positive.")
        if self.read_chunk_size < 1:
            raise ConfigError("Read chunk size must be positive.")
        if self.part_size < MIN_PART_SIZE:
            raise ConfigError(
                f"Part size must be at least {MIN_PART_SIZE} bytes, "
                f"got {self.part_size}."
            )


def _load_source() -> S3Config:
    return S3Config(
        endpoint_url=_get_env_var("COLDMIRROR_SOURCE_ENDPOINT_URL"),
        access_key_id=_get_env_var("COLDMIRROR_SOURCE_ACCESS_KEY_ID"),
        secret_access_key=_get_env_var("COLDMIRROR_SOURCE_SECRET_ACCESS_KEY"),
        bucket=_get_env_var("COLDMIRROR_SOURCE_BUCKET"),
        region=_get_env_var("COLDMIRROR_SOURCE_REGION", "us-east-1"),
        force_path_style=_get_env_flag("COLDMIRROR_SOURCE_FORCE_PATH_STYLE"),
    )


def _archive_bucket_name() -> str:
    """
    Resolves the archive bucket name.

    An explicit ``COLDMIRROR_ARCHIVE_BUCKET`` wins; otherwise the name is the
    source bucket followed by ``COLDMIRROR_ARCHIVE_BUCKET_SUFFIX``.

    Returns:
        str: The archive bucket name.
    """
    explicit: Optional[str] = os.environ.get("COLDMIRROR_ARCHIVE_BUCKET")
    if explicit:
        return explicit
    suffix: Optional[str] = os.environ.get("COLDMIRROR_ARCHIVE_BUCKET_SUFFIX")
    if not suffix:
        raise ConfigError(
            "Either 'COLDMIRROR_ARCHIVE_BUCKET' or "
            "'COLDMIRROR_ARCHIVE_BUCKET_SUFFIX' must be set."
        )
    return _get_env_var("COLDMIRROR_SOURCE_BUCKET") + suffix


def _load_archive() -> S3Config:
    return S3Config(
        endpoint_url=_get_env_var("COLDMIRROR_ARCHIVE_ENDPOINT_URL"),
        access_key_id=_get_env_var("COLDMIRROR_ARCHIVE_ACCESS_KEY_ID"),
        secret_access_key=_get_env_var("COLDMIRROR_ARCHIVE_SECRET_ACCESS_KEY"),
        bucket=_archive_bucket_name(),
        region=_get_env_var("COLDMIRROR_ARCHIVE_REGION", "us-east-1"),
        force_path_style=_get_env_flag("COLDMIRROR_ARCHIVE_FORCE_PATH_STYLE"),
    )


def _load_webhook() -> Optional[WebhookConfig]:
    url: Optional[str] = os.environ.get("COLDMIRROR_WEBHOOK_URL")
    if not url:
        return None
    return WebhookConfig(
        url=url,
        secret=os.environ.get("COLDMIRROR_WEBHOOK_SECRET") or None,
        signature_header=os.environ.get(
            "COLDMIRROR_WEBHOOK_SIGNATURE_HEADER", "X-TRAQ-Signature"
        ),
    )


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        source (S3Config): The primary store that is backed up and restored to.
        archive (S3Config): The cold-archive store holding compressed copies.
        app (AppConfig): General application settings.
        webhook (WebhookConfig, optional): Summary notification target.
    """

    source: S3Config = field(default_factory=_load_source)
    archive: S3Config = field(default_factory=_load_archive)
    app: AppConfig = field(default_factory=AppConfig)
    webhook: Optional[WebhookConfig] = field(default_factory=_load_webhook)
