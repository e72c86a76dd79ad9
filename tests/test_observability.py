from __future__ import annotations

import json
import logging

from farmwatch import observability as obs


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("farmwatch.poll", logging.INFO, __file__, 1, "poll_device_ok", None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_parse_cloud_trace_context() -> None:
    assert obs.parse_cloud_trace_context("abc123/456;o=1") == "abc123"
    assert obs.parse_cloud_trace_context("") is None


def test_json_formatter_emits_fields_and_trace() -> None:
    fmt = obs.JsonFormatter(obs.JsonLogConfig(gcp_project_id="farm-proj"))
    payload = json.loads(
        fmt.format(_record(fields={"device_id": "soil-1", "percent": 50.0}, request_id="rid-1", trace_id="t-1"))
    )

    assert payload["severity"] == "INFO"
    assert payload["logger"] == "farmwatch.poll"
    assert payload["service"] == "farmwatch"
    assert payload["fields"] == {"device_id": "soil-1", "percent": 50.0}
    assert payload["request_id"] == "rid-1"
    assert payload["logging.googleapis.com/trace"] == "projects/farm-proj/traces/t-1"


def test_text_formatter_appends_fields() -> None:
    line = obs.TextFormatter().format(_record(fields={"device_id": "soil-1"}))
    assert line.endswith("poll_device_ok device_id=soil-1")
