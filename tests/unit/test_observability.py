"""
Unit tests for logging setup and the debug log adapter.
"""

import logging

import json_log_formatter

from shelfdb.config import ObservabilityConfig
from shelfdb.observability import DebugLog, setup_logging


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self):
        """json format installs the JSON formatter."""
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging(ObservabilityConfig(log_level="WARNING", log_format="json"))
            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        finally:
            root.handlers, root.level = saved[0], saved[1]

    def test_text_format(self):
        """text format installs a plain formatter."""
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            setup_logging(ObservabilityConfig(log_level="bogus", log_format="text"))
            assert root.level == logging.INFO
            assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        finally:
            root.handlers, root.level = saved[0], saved[1]


class TestDebugLog:
    """Tests for DebugLog."""

    def test_disabled_emits_nothing(self, caplog):
        """A disabled adapter is silent even at DEBUG level."""
        caplog.set_level(logging.DEBUG, logger="shelfdb.test")
        log = DebugLog(logging.getLogger("shelfdb.test"), enabled=False)

        log.debug("hidden")
        log.error("also hidden")

        assert caplog.records == []

    def test_enabled_merges_context(self, caplog):
        """Adapter context and call extra both reach the record."""
        caplog.set_level(logging.DEBUG, logger="shelfdb.test")
        log = DebugLog(logging.getLogger("shelfdb.test"), enabled=True, component="upgrade")

        log.bind(database="library").debug("Creating collection", extra={"new_version": 2})

        record = caplog.records[0]
        assert record.getMessage() == "Creating collection"
        assert record.component == "upgrade"
        assert record.database == "library"
        assert record.new_version == 2
