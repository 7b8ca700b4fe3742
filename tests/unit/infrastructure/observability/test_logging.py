"""Tests for structured logging."""

import json
import logging

import pytest

from jellysync.infrastructure.observability import log_operation
from jellysync.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CorrelationIdFilter,
    CustomJsonFormatter,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """configure_logging() swaps root handlers, put the originals back afterwards."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str = "items.page_done", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="jellysync.test",
        level=logging.ERROR if exc_info else logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self):
        result = set_correlation_id("sync-123-abc")
        assert result == "sync-123-abc"
        assert get_correlation_id() == "sync-123-abc"

    def test_set_correlation_id_generates_uuid_when_none(self):
        """Passing None creates a fresh id per job."""
        first = set_correlation_id(None)
        second = set_correlation_id(None)
        assert first
        assert first != second
        assert get_correlation_id() == second

    def test_filter_stamps_records(self):
        set_correlation_id("sync-789")
        record = _record()
        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "sync-789"


class TestLoggingConfiguration:
    """Test logging configuration."""

    def test_configure_logging_debug_level(self):
        configure_logging(log_level="DEBUG", json_format=False, app_name="test-app")
        assert logging.getLogger("test").getEffectiveLevel() <= logging.DEBUG

    def test_configure_logging_replaces_handlers(self):
        configure_logging(log_level="INFO", json_format=False)
        configure_logging(log_level="INFO", json_format=True)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, CustomJsonFormatter)

    def test_noisy_http_loggers_are_quieted(self):
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING


class TestFormatters:
    """JSON and compact formatters."""

    def test_json_formatter_includes_correlation_id(self):
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        record = _record()
        record.correlation_id = "sync-json"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "items.page_done"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "jellysync.test"
        assert payload["correlation_id"] == "sync-json"

    def test_json_formatter_masks_secret_extras(self):
        formatter = CustomJsonFormatter("%(message)s")
        record = _record("jellyfin.request_retry")
        record.api_key = "secret-key"
        record.server = "home"

        payload = json.loads(formatter.format(record))

        assert payload["api_key"] == "[REDACTED]"
        assert payload["server"] == "home"

    def test_compact_formatter_appends_sorted_extras(self):
        formatter = CompactExceptionFormatter(fmt="%(levelname)s %(message)s")
        record = _record("items.page_done")
        record.server = "home"
        record.page = 2

        assert formatter.format(record) == "INFO items.page_done page=2 server=home"

    def test_compact_formatter_prints_chain_root_cause_first(self):
        try:
            try:
                raise ConnectionError("refused")
            except ConnectionError as inner:
                raise RuntimeError("page fetch failed") from inner
        except RuntimeError as e:
            exc_info = (type(e), e, e.__traceback__)

        text = CompactExceptionFormatter().formatException(exc_info)

        lines = [line for line in text.splitlines() if line.startswith("╰─►")]
        assert lines == [
            "╰─► ConnectionError: refused",
            "╰─► RuntimeError: page fetch failed",
        ]


class TestLogOperation:
    """Start/complete/failed lines of log_operation()."""

    async def test_logs_summary_on_completion(self, caplog):
        logger = logging.getLogger("jellysync.test")
        with caplog.at_level(logging.INFO, logger="jellysync.test"):
            async with log_operation(logger, "items_sync", server="home") as summary:
                summary["inserted"] = 3

        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["items_sync.started", "items_sync.completed"]
        completed = caplog.records[-1]
        assert completed.server == "home"
        assert completed.inserted == 3
        assert completed.duration_ms >= 0

    async def test_logs_failure_and_reraises(self, caplog):
        logger = logging.getLogger("jellysync.test")
        with caplog.at_level(logging.INFO, logger="jellysync.test"):
            with pytest.raises(ValueError):
                async with log_operation(logger, "users_sync", server="home"):
                    raise ValueError("boom")

        failed = caplog.records[-1]
        assert failed.getMessage() == "users_sync.failed"
        assert failed.error == "boom"
        assert failed.error_type == "ValueError"
