import json
import logging
import sys

from scrobbler.utils.logging import JsonFormatter


def make_record(msg, exc_info=None, **extra):
    record = logging.LogRecord("scrobbler.test", logging.INFO, __file__, 1, msg, (), exc_info)
    record.__dict__.update(extra)
    return record


class TestJsonFormatter:
    def test_message_level_and_extra(self):
        line = JsonFormatter().format(make_record("Listen queued", account_id="user-1", ts=100))
        entry = json.loads(line)

        assert entry["message"] == "Listen queued"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "scrobbler.test"
        assert entry["account_id"] == "user-1"
        assert entry["ts"] == 100
        assert "timestamp" in entry

    def test_exception_is_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record("Reconcile run failed", exc_info=sys.exc_info())

        entry = json.loads(JsonFormatter().format(record))

        assert "RuntimeError: boom" in entry["exception"]
