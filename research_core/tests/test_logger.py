import json
import logging

from research_core.infrastructure.logging.logger import JsonFormatter


def _record(msg, extra):
    record = logging.makeLogRecord({"name": "research_core", "levelname": "INFO", "msg": msg})
    record.extra = extra
    return record


def test_redaction_hides_tool_args_and_query():
    extra = {
        "tool_name": "brave_web_search",
        "tool_args": {"query": "acme merger rumours", "count": 12},
        "query": "acme merger rumours",
        "error": "x" * 200,
    }
    data = json.loads(JsonFormatter(redact=True).format(_record("Tool call received", extra)))
    assert data["msg"] == "Tool call received"
    assert data["tool_name"] == "brave_web_search"
    assert data["tool_args"] == ["count", "query"]
    assert data["query"] == "<19 chars>"
    assert len(data["error"]) == 64
    assert "acme" not in json.dumps(data)


def test_without_redaction_extras_are_kept():
    extra = {"tool_args": {"query": "acme"}, "query": "acme"}
    data = json.loads(JsonFormatter(redact=False).format(_record("m" * 100, extra)))
    assert data["tool_args"] == {"query": "acme"}
    assert data["query"] == "acme"
    assert data["msg"] == "m" * 100
