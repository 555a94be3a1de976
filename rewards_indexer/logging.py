"""Simple console logging utilities."""

from __future__ import annotations

import logging
from typing import Any

LOGGER_NAME = "rewards_indexer"


class SimpleLogger:
    """Very small wrapper around :mod:`logging` used across the indexer.

    Every method takes an optional ``source`` (usually the network name) and
    ``payload``; both are folded into the message so a test can assert on
    ``record.getMessage()`` without knowing the formatter.
    """

    def __init__(self, name: str = LOGGER_NAME, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(name)
        if logger is None and not self._logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                "%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)
            self.configure()

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def configure(self, level: int = logging.INFO) -> None:
        self._logger.setLevel(level)

    # ------------------------------------------------------------------
    # Basic logging methods
    # ------------------------------------------------------------------
    def debug(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.debug(self._format(msg, source, payload))

    def info(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.info(self._format(msg, source, payload))

    def warning(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.warning(self._format(msg, source, payload))

    def error(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.error(self._format(msg, source, payload))

    # Convenience aliases ------------------------------------------------
    def success(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.info(self._format(msg, source, payload))

    def banner(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.info(self._format(f"==== {msg} ====", source, payload))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _format(self, msg: str, source: str | None, payload: Any | None = None) -> str:
        base = f"{source} - {msg}" if source else msg
        if payload is not None:
            base = f"{base} {payload}"
        return base


# Public API ---------------------------------------------------------------
log = SimpleLogger()


def configure_console_log(debug: bool = False) -> None:
    """Configure the console logger."""
    level = logging.DEBUG if debug else logging.INFO
    log.configure(level)


__all__ = ["LOGGER_NAME", "SimpleLogger", "log", "configure_console_log"]
