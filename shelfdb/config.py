"""
Configuration management for shelfdb.

Configuration is passed explicitly into the components that need it; nothing
reads global state at call time. ``from_env()`` builds a configuration from
environment variables for the CLI and for applications that prefer it.

Invariants:
    - All settings have sensible defaults for local development
    - The debug flag affects diagnostic logging only, never data or control flow
    - Configuration objects are immutable once built

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class EngineBackend(Enum):
    """Supported storage engine backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class StorageConfig:
    """SQLite engine storage configuration.

    Attributes:
        data_dir: Directory holding one SQLite file per database
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "./shelfdb-data"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("SHELFDB_DATA_DIR", "./shelfdb-data"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class PipelineConfig:
    """Pipeline behavior configuration.

    Attributes:
        debug: Emit diagnostic log lines for every pipeline step
        blocked_timeout_ms: How long an upgrade or deletion waits for other
            connections to close before failing
        operation_timeout_ms: Optional per-call deadline (None = no deadline)
    """

    debug: bool = False
    blocked_timeout_ms: int = 5000
    operation_timeout_ms: int | None = None

    @property
    def blocked_timeout(self) -> float:
        return self.blocked_timeout_ms / 1000.0

    @property
    def operation_timeout(self) -> float | None:
        if self.operation_timeout_ms is None:
            return None
        return self.operation_timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Load configuration from environment variables."""
        timeout = os.getenv("SHELFDB_OPERATION_TIMEOUT_MS")
        return cls(
            debug=_env_bool("SHELFDB_DEBUG", "false"),
            blocked_timeout_ms=int(os.getenv("SHELFDB_BLOCKED_TIMEOUT_MS", "5000")),
            operation_timeout_ms=int(timeout) if timeout else None,
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class ShelfConfig:
    """Complete shelfdb configuration.

    Attributes:
        engine: Which storage engine backend to use
        storage: SQLite storage configuration
        pipeline: Pipeline configuration
        observability: Logging configuration
    """

    engine: EngineBackend = EngineBackend.MEMORY
    storage: StorageConfig = field(default_factory=StorageConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ShelfConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        backend_str = os.getenv("SHELFDB_ENGINE", "memory").lower()
        try:
            engine = EngineBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid SHELFDB_ENGINE '{backend_str}'. Must be one of: memory, sqlite"
            )

        config = cls(
            engine=engine,
            storage=StorageConfig.from_env(),
            pipeline=PipelineConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.pipeline.blocked_timeout_ms <= 0:
            raise ValueError("SHELFDB_BLOCKED_TIMEOUT_MS must be positive")
        if self.pipeline.operation_timeout_ms is not None and self.pipeline.operation_timeout_ms <= 0:
            raise ValueError("SHELFDB_OPERATION_TIMEOUT_MS must be positive")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must not be negative")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.engine == EngineBackend.SQLITE and not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first open."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "shelfdb configuration loaded",
            extra={
                "engine": self.engine.value,
                "data_dir": self.storage.data_dir if self.engine == EngineBackend.SQLITE else None,
                "debug": self.pipeline.debug,
                "blocked_timeout_ms": self.pipeline.blocked_timeout_ms,
                "operation_timeout_ms": self.pipeline.operation_timeout_ms,
                "log_level": self.observability.log_level,
            },
        )
