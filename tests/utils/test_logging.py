"""
Tests for the local log formatter.
"""

import logging

from trackproof.utils.logging import LocalFormatter, _resolve_level


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "trackproof.sync.orchestrator", logging.INFO, __file__, 1, "Sync started", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_fields_rendered():
    formatter = LocalFormatter("%(message)s")
    output = formatter.format(_record(json_fields={"record_id": 17, "attempt": 2}))

    first_line, rest = output.split("\n", 1)
    assert first_line == "Sync started"
    assert '"record_id": 17' in rest


def test_plain_record():
    assert LocalFormatter("%(message)s").format(_record()) == "Sync started"


def test_resolve_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert _resolve_level(None) == logging.DEBUG
    assert _resolve_level("warning") == logging.WARNING
    assert _resolve_level(logging.ERROR) == logging.ERROR
    assert _resolve_level("nonsense") == logging.INFO
