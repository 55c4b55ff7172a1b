"""Tests for rtcsifter.parser.console and rtcsifter.analysis.console_events."""

from __future__ import annotations

import json
import logging

from rtcsifter.analysis.console_events import classify_console_line, mine_interruptions
from rtcsifter.parser.console import (
    ConsoleLogStore,
    infer_log_level,
    iso_to_ms,
    leading_timestamp,
    parse_console_line,
    parse_console_text,
)
from rtcsifter.storage.models import MediaEventType

from conftest import write_console

BAD_DATE_LINE = "2025-13-45T99:00:00.000Z [INFO] [rtc] ice failed"


class TestIsoToMs:
    def test_epoch(self):
        assert iso_to_ms("1970-01-01T00:00:01.500Z") == 1500

    def test_leading_timestamp(self):
        assert leading_timestamp("1970-01-01T00:00:02.000Z hello") == 2000
        assert leading_timestamp("hello 1970-01-01T00:00:02.000Z") is None

    def test_leading_timestamp_impossible_date(self):
        assert leading_timestamp(BAD_DATE_LINE) is None


class TestInferLogLevel:
    def test_marker_wins(self):
        assert infer_log_level("[DEBUG] request failed") == "DEBUG"

    def test_warning_marker_normalised(self):
        assert infer_log_level("[warning] something") == "WARN"

    def test_keywords(self):
        assert infer_log_level("connection failed") == "ERROR"
        assert infer_log_level("this API is deprecated") == "WARN"
        assert infer_log_level("verbose output") == "DEBUG"
        assert infer_log_level("entering state") == "TRACE"

    def test_default(self):
        assert infer_log_level("joined the room") == "INFO"
        assert infer_log_level("") == "INFO"


class TestParseConsoleLine:
    def test_level_and_component(self):
        line = "2025-09-16T23:47:43.632Z [DEBUG] [videosipgw:VideoSIPGW] element added"
        e = parse_console_line(line, 3, "s1")
        assert e.level == "DEBUG"
        assert e.component == "videosipgw"
        assert e.message == "element added"
        assert e.line_number == 3
        assert e.session_id == "s1"
        assert e.timestamp == iso_to_ms("2025-09-16T23:47:43.632Z")

    def test_component_only(self):
        e = parse_console_line("1970-01-01T00:00:01.000Z [xmpp:ChatRoom] join failed", 1, "s")
        assert e.component == "xmpp"
        assert e.level == "ERROR"

    def test_bare(self):
        e = parse_console_line("1970-01-01T00:00:01.000Z just text", 1, "s")
        assert e.component == "Unknown"
        assert e.message == "just text"

    def test_unrecognised(self):
        assert parse_console_line("no timestamp here", 1, "s") is None

    def test_impossible_date_is_unrecognised(self):
        assert parse_console_line(BAD_DATE_LINE, 1, "s") is None


class TestParseConsoleText:
    def test_every_non_blank_line_kept(self):
        text = "\n".join([
            "1970-01-01T00:00:01.000Z [INFO] [a:b] one",
            "",
            json.dumps({"timestamp": 5000, "level": "WARN", "message": "two", "component": "c"}),
            "random exception text",
        ])
        entries = parse_console_text(text, "s1", now_ms=100000)
        assert len(entries) == 3
        assert entries[1].timestamp == 5000
        assert entries[1].level == "WARN"
        assert entries[1].fields["component"] == "c"
        assert entries[2].level == "ERROR"
        assert entries[2].timestamp == 100000 + 2

    def test_json_without_level_infers_it(self):
        entries = parse_console_text(json.dumps({"message": "ice failed"}), "s", now_ms=10)
        assert entries[0].level == "ERROR"
        assert entries[0].timestamp == 10

    def test_json_non_object_treated_as_text(self):
        entries = parse_console_text("[1, 2, 3]", "s", now_ms=0)
        assert entries[0].message == "[1, 2, 3]"

    def test_impossible_date_gets_synthetic_timestamp(self):
        entries = parse_console_text("\n".join(["1970-01-01T00:00:01.000Z ok", BAD_DATE_LINE]), "s", now_ms=500)
        assert [e.timestamp for e in entries] == [1000, 501]
        assert entries[1].message == BAD_DATE_LINE
        assert entries[1].level == "INFO"


class TestConsoleLogStore:
    def test_missing_file(self, tmp_path, caplog):
        store = ConsoleLogStore(tmp_path)
        with caplog.at_level(logging.DEBUG, logger="rtcsifter.parser.console"):
            assert store.raw_lines("nope") is None
        assert "Console log not found" in caplog.text
        assert store.entries("nope") == []

    def test_reads_lines(self, tmp_path):
        write_console(tmp_path, "s1", ["1970-01-01T00:00:01.000Z a", "", "b"])
        store = ConsoleLogStore(tmp_path)
        assert store.raw_lines("s1") == ["1970-01-01T00:00:01.000Z a", "b"]
        assert len(store.entries("s1")) == 2


class TestConsoleInterruptions:
    def test_classify_ice(self):
        assert classify_console_line("triggering ice restart after 2 tries") == (
            MediaEventType.ICE_FAILURE, "ice_failures",
        )
        line = "ICE failed, force reloading the conference after failed attempts to re-establish ICE"
        assert classify_console_line(line)[0] == MediaEventType.ICE_FAILURE

    def test_classify_bwe(self):
        assert classify_console_line("TrackStreamingStatus ep1 active => inactive") == (
            MediaEventType.BWE_ISSUE, "bwe_issues",
        )
        assert classify_console_line("TrackStreamingStatus ep1 inactive => active") is None

    def test_mine_interruptions(self, tmp_path):
        write_console(tmp_path, "s1", [
            "1970-01-01T00:00:02.000Z [INFO] [rtc] triggering ice restart after 1 failure",
            "triggering ice restart after 1 failure",
            "1970-01-01T00:00:03.000Z [WARN] [TrackStreamingStatus] active => inactive",
        ])
        events = mine_interruptions(ConsoleLogStore(tmp_path), {"s1": "ep1", "s2": "ep2"}, "Alice", "Alice-x")
        assert [(e.timestamp, e.type) for e in events] == [
            (2000, MediaEventType.ICE_FAILURE),
            (3000, MediaEventType.BWE_ISSUE),
        ]
        assert all(e.category == "media_interruption" for e in events)
        assert events[0].participant_id == "Alice-x"
        assert events[0].metadata["endpoint_id"] == "ep1"
        assert events[0].metadata["session_id"] == "s1"

    def test_impossible_date_skipped(self, tmp_path):
        write_console(tmp_path, "s1", [
            "2025-13-45T99:00:00.000Z [INFO] [rtc] triggering ice restart after 1 failure",
            "1970-01-01T00:00:04.000Z [INFO] [rtc] triggering ice restart after 2 failures",
        ])
        events = mine_interruptions(ConsoleLogStore(tmp_path), {"s1": "ep1"}, "Alice", "Alice-x")
        assert [e.timestamp for e in events] == [4000]
