"""Tests for structured logging."""

import json
import logging
import sys

from concierge.logging_config import JSONFormatter, setup_logging


def _record(context=None, exc_info=None):
    record = logging.LogRecord(
        name="concierge.agents.decision",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg="Replied %s via %s",
        args=("ticket-1", "hot_question"),
        exc_info=exc_info,
    )
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "concierge.agents.decision"
        assert data["message"] == "Replied ticket-1 via hot_question"
        assert "context" not in data

    def test_correlation_keys_lifted(self):
        """Test that trace and merchant ids become top-level keys."""
        record = _record({"trace_id": "ticket-1", "merchant_id": "demo", "input_type": "voice"})

        data = json.loads(JSONFormatter().format(record))

        assert data["trace_id"] == "ticket-1"
        assert data["merchant_id"] == "demo"
        assert data["context"] == {"input_type": "voice"}

    def test_non_ascii_kept(self):
        record = _record({"question": "门票多少钱"})

        assert "门票多少钱" in JSONFormatter().format(record)

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record(exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert "ValueError: boom" in data["exception"]


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_writes_json_file(self, tmp_path):
        log_file = tmp_path / "logs" / "app.log"
        setup_logging(log_level="DEBUG", log_file=str(log_file), console_format="text")

        logging.getLogger("concierge.test").info("hello", extra={"context": {"trace_id": "t1"}})
        for handler in logging.getLogger().handlers:
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert json.loads(line)["trace_id"] == "t1"
        assert logging.getLogger("httpx").level == logging.WARNING
