from __future__ import annotations

import json
import logging
import sys

from output_workflows.logging import JsonFormatter


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "output_workflows.test", logging.INFO, __file__, 1, "hello %s", ("world",), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formats_single_json_line() -> None:
    line = JsonFormatter().format(_record(workflow_id="wf-1"))

    payload = json.loads(line)
    assert "\n" not in line
    assert payload["level"] == "INFO"
    assert payload["logger"] == "output_workflows.test"
    assert payload["message"] == "hello world"
    assert payload["extra"] == {"workflow_id": "wf-1"}


def test_credential_like_extras_are_masked() -> None:
    payload = json.loads(
        JsonFormatter().format(
            _record(webhook_secret="s3cr3t", signature="abcd", api_key="k", retry_count=2)
        )
    )

    assert payload["extra"] == {
        "webhook_secret": "***",
        "signature": "***",
        "api_key": "***",
        "retry_count": 2,
    }


def test_exception_is_included() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(JsonFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]
