import json
import logging
import sys

from libs.logging import _JsonFormatter, setup_logging


def make_record(**extra):
    record = logging.LogRecord("tracker.test", logging.INFO, __file__, 1, "checked %d links", (3,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_stable_keys():
    line = _JsonFormatter("scrapper", "test").format(make_record(link_id=7))
    data = json.loads(line)

    assert data["message"] == "checked 3 links"
    assert data["level"] == "INFO"
    assert data["logger"] == "tracker.test"
    assert data["service"] == "scrapper"
    assert data["environment"] == "test"
    assert data["link_id"] == 7
    assert data["timestamp"].endswith("Z")


def test_formatter_adds_error_block():
    try:
        raise ValueError("bad value")
    except ValueError:
        record = logging.LogRecord("t", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    data = json.loads(_JsonFormatter("bot", "test").format(record))

    assert data["error"] == {"class": "ValueError", "message": "bad value"}


def test_setup_logging_replaces_handlers():
    root = logging.getLogger()
    previous = (root.handlers[:], root.level)
    try:
        setup_logging("bot")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, _JsonFormatter)
        assert root.handlers[0].formatter.service == "bot"
        assert logging.getLogger("aiokafka").level >= logging.WARNING
    finally:
        root.handlers[:] = previous[0]
        root.setLevel(previous[1])
