"""
Configuration management for RipDB.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The IPFS API key is required whenever the IPFS archive backend is used
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env variable names stable; they are part of deployments
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class CacheBackend(Enum):
    """Supported fast store backends."""

    REDIS = "redis"
    MEMORY = "memory"


class ArchiveBackend(Enum):
    """Supported archive store backends."""

    IPFS = "ipfs"
    MEMORY = "memory"


@dataclass(frozen=True)
class RedisConfig:
    """Redis fast store configuration.

    Attributes:
        url: Redis connection URL (redis:// or rediss://)
        username: Optional ACL username
        password: Optional password
        socket_timeout: Socket connect/read timeout in seconds
    """

    url: str = "redis://localhost:6379/0"
    username: str | None = None
    password: str | None = None
    socket_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> RedisConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("RIPDB_REDIS_URL", "redis://localhost:6379/0"),
            username=os.getenv("RIPDB_REDIS_USERNAME"),
            password=os.getenv("RIPDB_REDIS_PASSWORD"),
            socket_timeout=float(os.getenv("RIPDB_REDIS_SOCKET_TIMEOUT", "5")),
        )


@dataclass(frozen=True)
class IpfsConfig:
    """IPFS archive configuration.

    Uploads go through a pinning-service HTTP API; reads go through a
    public or private HTTP gateway with the CID in the URL path.

    Attributes:
        api_key: Bearer token for the pinning-service API
        api_url: Base URL of the pinning-service API
        gateway_url: Base URL of the read gateway
        timeout: HTTP timeout in seconds for a single request
    """

    api_key: str | None = None
    api_url: str = "https://api.nft.storage"
    gateway_url: str = "https://ipfs.io/ipfs"
    timeout: float = 60.0

    @classmethod
    def from_env(cls) -> IpfsConfig:
        """Load configuration from environment variables."""
        return cls(
            api_key=os.getenv("RIPDB_IPFS_API_KEY"),
            api_url=os.getenv("RIPDB_IPFS_API_URL", "https://api.nft.storage"),
            gateway_url=os.getenv("RIPDB_IPFS_GATEWAY_URL", "https://ipfs.io/ipfs"),
            timeout=float(os.getenv("RIPDB_IPFS_TIMEOUT", "60")),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Archive fetch retry configuration.

    Attributes:
        fetch_retries: Maximum fetch attempts in total
        initial_delay_ms: Delay before the first retry
        factor: Backoff multiplier applied per retry
        max_delay_ms: Cap on a single backoff delay (5 minutes)
        attempt_timeout_ms: Cap on a single attempt (5 minutes)
    """

    fetch_retries: int = 5
    initial_delay_ms: int = 1000
    factor: float = 2.0
    max_delay_ms: int = 5 * 60 * 1000
    attempt_timeout_ms: int = 5 * 60 * 1000

    @classmethod
    def from_env(cls) -> RetryConfig:
        """Load configuration from environment variables."""
        return cls(
            fetch_retries=int(os.getenv("RIPDB_FETCH_RETRIES", "5")),
            initial_delay_ms=int(os.getenv("RIPDB_RETRY_INITIAL_DELAY_MS", "1000")),
            factor=float(os.getenv("RIPDB_RETRY_FACTOR", "2")),
            max_delay_ms=int(os.getenv("RIPDB_RETRY_MAX_DELAY_MS", str(5 * 60 * 1000))),
            attempt_timeout_ms=int(
                os.getenv("RIPDB_RETRY_ATTEMPT_TIMEOUT_MS", str(5 * 60 * 1000))
            ),
        )


@dataclass(frozen=True)
class BackupConfig:
    """Background backup configuration.

    Attributes:
        max_retries: Extra upload attempts after a failed archive write
            (0 means a single upload attempt)
        drain_timeout_seconds: How long close() waits for in-flight tasks
    """

    max_retries: int = 0
    drain_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> BackupConfig:
        """Load configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("RIPDB_BACKUP_RETRIES", "0")),
            drain_timeout_seconds=float(os.getenv("RIPDB_DRAIN_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("RIPDB_LOG_LEVEL", "INFO"),
            log_format=os.getenv("RIPDB_LOG_FORMAT", "json"),
        )


@dataclass(frozen=True)
class ClientConfig:
    """Complete RipDB client configuration.

    Attributes:
        cache_backend: Fast store backend
        archive_backend: Archive store backend
        redis: Redis settings
        ipfs: IPFS settings
        retry: Fetch retry settings
        backup: Background backup settings
        observability: Logging settings
    """

    cache_backend: CacheBackend = CacheBackend.REDIS
    archive_backend: ArchiveBackend = ArchiveBackend.IPFS
    redis: RedisConfig = field(default_factory=RedisConfig)
    ipfs: IpfsConfig = field(default_factory=IpfsConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        cache_str = os.getenv("RIPDB_CACHE_BACKEND", "redis").lower()
        try:
            cache_backend = CacheBackend(cache_str)
        except ValueError:
            raise ValueError(
                f"Invalid RIPDB_CACHE_BACKEND '{cache_str}'. Must be one of: redis, memory"
            )

        archive_str = os.getenv("RIPDB_ARCHIVE_BACKEND", "ipfs").lower()
        try:
            archive_backend = ArchiveBackend(archive_str)
        except ValueError:
            raise ValueError(
                f"Invalid RIPDB_ARCHIVE_BACKEND '{archive_str}'. Must be one of: ipfs, memory"
            )

        config = cls(
            cache_backend=cache_backend,
            archive_backend=archive_backend,
            redis=RedisConfig.from_env(),
            ipfs=IpfsConfig.from_env(),
            retry=RetryConfig.from_env(),
            backup=BackupConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.archive_backend == ArchiveBackend.IPFS and not self.ipfs.api_key:
            raise ValueError("RIPDB_IPFS_API_KEY is required when RIPDB_ARCHIVE_BACKEND=ipfs")

        if self.retry.fetch_retries < 1:
            raise ValueError("RIPDB_FETCH_RETRIES must be at least 1")

        if self.backup.max_retries < 0:
            raise ValueError("RIPDB_BACKUP_RETRIES must not be negative")

        if self.cache_backend == CacheBackend.MEMORY:
            logger.warning("Using in-memory fast store; data is lost on process exit")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "RipDB configuration loaded",
            extra={
                "cache_backend": self.cache_backend.value,
                "archive_backend": self.archive_backend.value,
                "redis_auth": bool(self.redis.password),
                "ipfs_api_url": self.ipfs.api_url
                if self.archive_backend == ArchiveBackend.IPFS
                else None,
                "ipfs_gateway_url": self.ipfs.gateway_url
                if self.archive_backend == ArchiveBackend.IPFS
                else None,
                "fetch_retries": self.retry.fetch_retries,
                "backup_retries": self.backup.max_retries,
                "log_level": self.observability.log_level,
            },
        )
