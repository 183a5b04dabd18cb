"""
Tests for JSON line rendering.
"""

import json

from logship.core.formatter import Formatter, JsonFormatter, LogfmtFormatter
from logship.models import LogLevel, LogRecord


class TestJsonFormatter:
    """JSON lines keep field order and native types."""

    def test_renders_ordered_object(self) -> None:
        record = LogRecord(
            timestamp_ns=1,
            level=LogLevel.ERROR,
            message="payment failed",
            module="billing",
            fields={"amount": 12.5, "retry": False, "card": None},
        )

        line = JsonFormatter().format(record)

        assert json.loads(line) == {
            "level": "error",
            "message": "payment failed",
            "module": "billing",
            "amount": 12.5,
            "retry": False,
            "card": None,
        }
        assert list(json.loads(line)) == ["level", "message", "module", "amount", "retry", "card"]

    def test_automatic_fields_win_over_record_fields(self) -> None:
        record = LogRecord(timestamp_ns=1, message="m", fields={"message": "shadow"})
        assert json.loads(JsonFormatter().format(record))["message"] == "m"

    def test_formatters_satisfy_protocol(self) -> None:
        assert isinstance(JsonFormatter(), Formatter)
        assert isinstance(LogfmtFormatter(), Formatter)
