"""Tests for logging setup and the callback sink."""

import logging

from synced_cron.config import Settings
from synced_cron.logs import LOG_TAG, CallbackHandler, configure_logging


def _child_logger() -> logging.Logger:
    return logging.getLogger("synced_cron.scheduler.engine")


def test_custom_logger_receives_level_message_tag() -> None:
    records: list[dict] = []
    configure_logging(Settings(logger=records.append))

    _child_logger().info('Scheduled "%s"', "Test Job")

    assert records == [{"level": "info", "message": 'Scheduled "Test Job"', "tag": LOG_TAG}]


def test_warning_maps_to_warn() -> None:
    records: list[dict] = []
    configure_logging(Settings(logger=records.append))

    _child_logger().warning("careful")

    assert records[0]["level"] == "warn"


def test_exception_text_included() -> None:
    records: list[dict] = []
    configure_logging(Settings(logger=records.append))

    try:
        raise RuntimeError("Haha, gotcha!")
    except RuntimeError:
        _child_logger().exception("Exception in job")

    assert records[0]["level"] == "error"
    assert "Haha, gotcha!" in records[0]["message"]
    assert "Traceback" in records[0]["message"]


def test_custom_logger_stops_propagation(caplog) -> None:
    records: list[dict] = []
    configure_logging(Settings(logger=records.append))

    with caplog.at_level(logging.INFO):
        _child_logger().info("only to the sink")

    assert len(records) == 1
    assert "only to the sink" not in caplog.text


def test_disabled_logging_is_silent(caplog) -> None:
    records: list[dict] = []
    configure_logging(Settings(log=False, logger=records.append))

    with caplog.at_level(logging.DEBUG):
        _child_logger().error("nobody hears this")

    assert records == []
    assert "nobody hears this" not in caplog.text


def test_default_propagates_to_root(caplog) -> None:
    configure_logging(Settings())

    with caplog.at_level(logging.INFO):
        _child_logger().info("to the host's handlers")

    assert "to the host's handlers" in caplog.text


def test_reconfigure_replaces_handler() -> None:
    first: list[dict] = []
    second: list[dict] = []
    pkg_logger = configure_logging(Settings(logger=first.append))
    configure_logging(Settings(logger=second.append))

    _child_logger().info("hello")

    assert first == []
    assert len(second) == 1
    assert sum(isinstance(h, CallbackHandler) for h in pkg_logger.handlers) == 1


def test_configuration_is_process_wide() -> None:
    first: list[dict] = []
    second: list[dict] = []
    configure_logging(Settings(logger=first.append))
    configure_logging(Settings(logger=second.append))

    _child_logger().info("after both")

    assert first == []
    assert [r["message"] for r in second] == ["after both"]
    handlers = logging.getLogger("synced_cron").handlers
    assert len([h for h in handlers if isinstance(h, CallbackHandler)]) == 1
