"""Tests for the logging formatter and metrics collector."""

import logging

from relay.observability import Metrics, get_logger
from relay.observability.logger import KeyValueFormatter


def test_formatter_appends_extra_fields():
    formatter = KeyValueFormatter("%(levelname)s | %(message)s")
    record = logging.makeLogRecord(
        {"msg": "subscribed", "levelname": "INFO", "channel": "room1", "handle_id": "h1"}
    )
    assert formatter.format(record) == "INFO | subscribed | channel='room1' handle_id='h1'"


def test_formatter_without_extra_fields():
    formatter = KeyValueFormatter("%(message)s")
    record = logging.makeLogRecord({"msg": "plain"})
    assert formatter.format(record) == "plain"


def test_get_logger_configures_once():
    logger = get_logger("relay.test.once")
    again = get_logger("relay.test.once")
    assert logger is again
    assert len(logger.handlers) == 1


def test_get_logger_honours_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    assert get_logger("relay.test.level").level == logging.WARNING


def test_raise_gauge_keeps_highest():
    metrics = Metrics()
    metrics.raise_gauge("fanout_peak", 3)
    metrics.raise_gauge("fanout_peak", 1)
    assert metrics.get_gauge("fanout_peak") == 3
    metrics.raise_gauge("fanout_peak", 5)
    assert metrics.get_gauge("fanout_peak") == 5


def test_metrics_counters_and_gauges():
    metrics = Metrics()
    metrics.increment("deliveries")
    metrics.increment("deliveries", 4)
    metrics.set_gauge("channels", 2)
    assert metrics.get_counter("deliveries") == 5
    assert metrics.get_counter("missing") == 0
    assert metrics.snapshot() == {"counters": {"deliveries": 5}, "gauges": {"channels": 2}}
