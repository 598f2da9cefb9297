"""
Unit tests for shelfdb configuration.

Tests cover:
- Defaults
- Loading from environment variables
- Validation
"""

import dataclasses

import pytest

from shelfdb.config import (
    EngineBackend,
    ObservabilityConfig,
    PipelineConfig,
    ShelfConfig,
    StorageConfig,
)


class TestDefaults:
    """Tests for default configuration."""

    def test_default_engine_is_memory(self):
        """In-memory engine is the default."""
        config = ShelfConfig()
        assert config.engine == EngineBackend.MEMORY
        assert config.pipeline.debug is False
        assert config.pipeline.operation_timeout is None

    def test_timeouts_in_seconds(self):
        """Millisecond settings convert to seconds."""
        config = PipelineConfig(blocked_timeout_ms=250, operation_timeout_ms=1500)
        assert config.blocked_timeout == 0.25
        assert config.operation_timeout == 1.5

    def test_configs_are_immutable(self):
        """Section configs are frozen."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            PipelineConfig().debug = True


class TestFromEnv:
    """Tests for environment loading."""

    def test_reads_all_sections(self, monkeypatch):
        """Every documented variable is honored."""
        monkeypatch.setenv("SHELFDB_ENGINE", "sqlite")
        monkeypatch.setenv("SHELFDB_DATA_DIR", "/tmp/shelves")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "100")
        monkeypatch.setenv("SHELFDB_DEBUG", "true")
        monkeypatch.setenv("SHELFDB_BLOCKED_TIMEOUT_MS", "200")
        monkeypatch.setenv("SHELFDB_OPERATION_TIMEOUT_MS", "300")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = ShelfConfig.from_env()

        assert config.engine == EngineBackend.SQLITE
        assert config.storage == StorageConfig(data_dir="/tmp/shelves", wal_mode=False, busy_timeout_ms=100)
        assert config.pipeline == PipelineConfig(debug=True, blocked_timeout_ms=200, operation_timeout_ms=300)
        assert config.observability == ObservabilityConfig(log_level="DEBUG", log_format="json")

    def test_engine_name_is_case_insensitive(self, monkeypatch):
        """SHELFDB_ENGINE accepts any case."""
        monkeypatch.setenv("SHELFDB_ENGINE", "MEMORY")
        assert ShelfConfig.from_env().engine == EngineBackend.MEMORY

    def test_invalid_engine(self, monkeypatch):
        """Unknown backend is rejected."""
        monkeypatch.setenv("SHELFDB_ENGINE", "postgres")
        with pytest.raises(ValueError, match="SHELFDB_ENGINE"):
            ShelfConfig.from_env()

    def test_empty_operation_timeout_means_none(self, monkeypatch):
        """An empty timeout variable disables the deadline."""
        monkeypatch.setenv("SHELFDB_OPERATION_TIMEOUT_MS", "")
        assert PipelineConfig.from_env().operation_timeout_ms is None


class TestValidate:
    """Tests for validation."""

    def test_valid_default(self):
        """Defaults pass validation."""
        ShelfConfig().validate()

    @pytest.mark.parametrize(
        "config",
        [
            ShelfConfig(pipeline=PipelineConfig(blocked_timeout_ms=0)),
            ShelfConfig(pipeline=PipelineConfig(operation_timeout_ms=-1)),
            ShelfConfig(storage=StorageConfig(busy_timeout_ms=-5)),
            ShelfConfig(observability=ObservabilityConfig(log_format="xml")),
        ],
    )
    def test_invalid_values(self, config):
        """Out-of-range values are rejected."""
        with pytest.raises(ValueError):
            config.validate()

    def test_missing_data_dir_only_warns(self, tmp_path, caplog):
        """A missing SQLite data dir is created later, so it only warns."""
        config = ShelfConfig(
            engine=EngineBackend.SQLITE,
            storage=StorageConfig(data_dir=str(tmp_path / "missing")),
        )
        config.validate()
        assert "does not exist" in caplog.text
