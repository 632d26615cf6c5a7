"""Logging setup — routes the ``synced_cron`` logger to the configured sink."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from synced_cron.config import Settings

LOG_TAG = "SyncedCron"
PACKAGE_LOGGER = "synced_cron"

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


class CallbackHandler(logging.Handler):
    """Forwards records to a user callable as ``{"level", "message", "tag"}``."""

    def __init__(self, sink: Callable[[dict[str, Any]], Any]) -> None:
        super().__init__()
        self.sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.sink(
                {
                    "level": _LEVEL_NAMES.get(record.levelno, "info"),
                    "message": self.format(record),
                    "tag": LOG_TAG,
                }
            )
        except Exception:
            self.handleError(record)


def configure_logging(settings: Settings) -> logging.Logger:
    """Apply the logging options from *settings* to the package logger.

    Logging configuration is process-wide: every engine shares the one
    ``synced_cron`` logger, so the most recent call wins. Safe to call
    repeatedly; each call replaces what the previous one installed.
    """
    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(pkg_logger.handlers):
        if isinstance(handler, CallbackHandler):
            pkg_logger.removeHandler(handler)
    pkg_logger.propagate = True

    if not settings.log:
        pkg_logger.setLevel(logging.CRITICAL + 1)
        return pkg_logger

    pkg_logger.setLevel(getattr(logging, settings.log_level))
    if settings.logger is not None:
        pkg_logger.addHandler(CallbackHandler(settings.logger))
        pkg_logger.propagate = False
    return pkg_logger
