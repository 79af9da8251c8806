"""Tests for pixie.usage.request_log."""

from __future__ import annotations

import json

from pixie.usage.ledger import DelegateUsage
from pixie.usage.request_log import RequestLog, RequestLogEntry, make_excerpt


def _entry(text: str = "hello", **overrides) -> RequestLogEntry:
    fields = {
        "message_excerpt": make_excerpt(text),
        "model": "claude-sonnet-4-5",
        "multiplier": 1.0,
        "total_premium_units": 1.0,
    }
    fields.update(overrides)
    return RequestLogEntry(**fields)


class TestMakeExcerpt:
    def test_collapses_whitespace(self):
        assert make_excerpt("hello\n\n  world") == "hello world"

    def test_truncates_long_text(self):
        excerpt = make_excerpt("x" * 500, limit=50)
        assert len(excerpt) == 50
        assert excerpt.endswith("…")

    def test_empty(self):
        assert make_excerpt("") == ""


class TestRequestLog:
    def test_append_writes_one_json_line_per_entry(self, tmp_path):
        log = RequestLog(tmp_path / "usage" / "requests.jsonl")
        log.append(_entry("one"))
        log.append(_entry("two"))
        lines = log.path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["message_excerpt"] == "one"
        assert json.loads(lines[1])["outcome"] == "reply"

    def test_read_preserves_order_and_delegate_sub_entries(self, tmp_path):
        log = RequestLog(tmp_path / "requests.jsonl")
        log.append(_entry("first"))
        log.append(
            _entry(
                "second",
                delegate_usage=[
                    DelegateUsage("delegate-1", "claude-opus-4-1", 3.0, 1, 3.0),
                ],
                total_premium_units=4.0,
            )
        )
        entries = log.read()
        assert [e.message_excerpt for e in entries] == ["first", "second"]
        assert entries[1].delegate_usage[0].delegate_id == "delegate-1"
        assert entries[1].delegate_usage[0].premium_units == 3.0
        assert entries[1].total_premium_units == 4.0

    def test_read_limit_returns_tail(self, tmp_path):
        log = RequestLog(tmp_path / "requests.jsonl")
        for i in range(5):
            log.append(_entry(f"m{i}"))
        assert [e.message_excerpt for e in log.read(limit=2)] == ["m3", "m4"]
        assert log.read(limit=0) == []

    def test_missing_file_reads_empty(self, tmp_path):
        assert RequestLog(tmp_path / "none.jsonl").read() == []

    def test_malformed_lines_are_skipped(self, tmp_path):
        log = RequestLog(tmp_path / "requests.jsonl")
        log.append(_entry("good"))
        with log.path.open("a", encoding="utf-8") as fh:
            fh.write("{not json\n")
            fh.write('{"model": "x"}\n')
        log.append(_entry("also good"))
        assert [e.message_excerpt for e in log.read()] == ["good", "also good"]
