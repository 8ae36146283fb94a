import json
import logging

from chat_core.infrastructure.logging.logger import JsonFormatter


def _record(extra):
    record = logging.LogRecord("chat_core", logging.WARNING, __file__, 1, "Provider soft failure", None, None)
    record.extra = extra
    return record


def test_extra_fields_are_flattened():
    line = JsonFormatter().format(_record({"provider": "relay", "code": "TIMEOUT"}))
    data = json.loads(line)
    assert data["msg"] == "Provider soft failure"
    assert data["level"] == "WARNING"
    assert data["provider"] == "relay"
    assert data["code"] == "TIMEOUT"
    assert data["ts"].endswith("Z")


def test_secrets_always_masked():
    data = json.loads(JsonFormatter().format(_record({"relay_api_key": "abc", "content": "hi"})))
    assert data["relay_api_key"] == "***"
    assert data["content"] == "hi"


def test_content_redaction():
    data = json.loads(JsonFormatter(redact_content=True).format(_record({"content": "secret question"})))
    assert data["content"] == "<15 chars>"
