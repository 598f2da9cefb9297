"""
Logging setup for shelfdb.

- setup_logging: configure the root logger from ObservabilityConfig
- DebugLog: logger adapter used by pipeline components for diagnostics that
  are only emitted when ``PipelineConfig.debug`` is set
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping

import json_log_formatter

from .config import ObservabilityConfig


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class DebugLog(logging.LoggerAdapter):
    """Logger adapter gated by the pipeline debug flag.

    When disabled every call is a no-op regardless of the logger level.
    Context passed in ``extra=`` is merged with the adapter's own context.

    Example:
        >>> log = DebugLog(logger, enabled=config.debug, database="library")
        >>> log.debug("open", extra={"version": 2})
    """

    def __init__(self, logger: logging.Logger, enabled: bool = False, **context: Any) -> None:
        super().__init__(logger, context)
        self.enabled = enabled

    def isEnabledFor(self, level: int) -> bool:
        return self.enabled and self.logger.isEnabledFor(level)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> DebugLog:
        """Return a new adapter with additional context."""
        return DebugLog(self.logger, self.enabled, **{**self.extra, **context})
