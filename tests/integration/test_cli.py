"""
Integration tests for the shelfdb command-line tool.

Every command runs against a SQLite data directory so state carries over
between invocations, the way it does for a real user.
"""

import json
import logging
import tempfile

import pytest

from shelfdb.config import EngineBackend
from shelfdb.tools.cli import build_parser, load_config, main


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers, root.level = handlers, level


class TestCLI:
    """Tests for main()."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def shelf(self, data_dir, *args):
        return main(["--engine", "sqlite", "--data-dir", data_dir, *args])

    def test_put_get_get_all(self, data_dir, capsys):
        """Records written by one command are read by the next."""
        assert self.shelf(data_dir, "put", "library", "books", '[{"title": "Dune"}, {"title": "Emma"}]') == 0
        assert json.loads(capsys.readouterr().out) == [1, 2]

        assert self.shelf(data_dir, "put", "library", "books", '{"title": "Ulysses"}') == 0
        assert json.loads(capsys.readouterr().out) == 3

        assert self.shelf(data_dir, "get", "library", "books", "1", "3") == 0
        records = json.loads(capsys.readouterr().out)
        assert [r["title"] for r in records] == ["Dune", "Ulysses"]

        assert self.shelf(data_dir, "get", "library", "books", "2") == 0
        assert json.loads(capsys.readouterr().out) == {"id": 2, "title": "Emma"}

        assert self.shelf(data_dir, "get-all", "library", "books", "--lower", "2", "--count", "1") == 0
        assert [r["id"] for r in json.loads(capsys.readouterr().out)] == [2]

    def test_info_and_drop(self, data_dir, capsys):
        """info reports the schema; drop resets it."""
        self.shelf(data_dir, "put", "library", "books", '{"title": "Dune"}')
        capsys.readouterr()

        assert self.shelf(data_dir, "info", "library") == 0
        assert json.loads(capsys.readouterr().out) == {
            "database": "library",
            "version": 2,
            "collections": ["books"],
        }

        assert self.shelf(data_dir, "drop", "library") == 0
        assert json.loads(capsys.readouterr().out) == {"deleted": "library"}

        self.shelf(data_dir, "info", "library")
        assert json.loads(capsys.readouterr().out)["version"] == 1

    def test_invalid_json(self, data_dir, capsys):
        assert self.shelf(data_dir, "put", "library", "books", "{not json") == 1
        assert "Invalid JSON" in capsys.readouterr().err

    def test_invalid_record(self, data_dir, capsys):
        """Non-record data is an invalid argument."""
        assert self.shelf(data_dir, "put", "library", "books", "42") == 1
        assert "INVALID_ARGUMENT" in capsys.readouterr().err

    def test_batch_failure_lists_items(self, data_dir, capsys):
        assert self.shelf(data_dir, "put", "library", "books", '[{"t": 1}, 7]') == 1
        err = capsys.readouterr().err
        assert "BATCH_ERROR" in err
        assert "item 1" in err

    def test_empty_range(self, data_dir, capsys):
        assert self.shelf(data_dir, "get-all", "library", "books", "--lower", "5", "--upper", "2") == 1
        assert "INVALID_ARGUMENT" in capsys.readouterr().err

    def test_invalid_config(self, data_dir, capsys, monkeypatch):
        """Bad environment configuration exits with 2."""
        monkeypatch.setenv("SHELFDB_BLOCKED_TIMEOUT_MS", "0")
        assert self.shelf(data_dir, "info", "library") == 2
        assert "Invalid configuration" in capsys.readouterr().err


class TestLoadConfig:
    """Tests for CLI configuration overrides."""

    def test_defaults_to_sqlite(self, monkeypatch):
        monkeypatch.delenv("SHELFDB_ENGINE", raising=False)
        config = load_config(build_parser().parse_args(["info", "library"]))
        assert config.engine == EngineBackend.SQLITE

    def test_environment_engine(self, monkeypatch):
        monkeypatch.setenv("SHELFDB_ENGINE", "memory")
        config = load_config(build_parser().parse_args(["info", "library"]))
        assert config.engine == EngineBackend.MEMORY

    def test_flags_override(self, monkeypatch):
        monkeypatch.setenv("SHELFDB_ENGINE", "memory")
        args = build_parser().parse_args(["--engine", "sqlite", "--data-dir", "/tmp/x", "--debug", "info", "db"])
        config = load_config(args)
        assert config.engine == EngineBackend.SQLITE
        assert config.storage.data_dir == "/tmp/x"
        assert config.pipeline.debug is True


class TestDebugFlag:
    """Tests for --debug."""

    def test_debug_logs_pipeline_steps(self, capsys):
        with tempfile.TemporaryDirectory() as data_dir:
            code = main(["--engine", "sqlite", "--data-dir", data_dir, "--debug", "put", "library", "books", "{}"])

        captured = capsys.readouterr()
        assert code == 0
        assert json.loads(captured.out) == 1
        assert "Creating collection" in captured.err
