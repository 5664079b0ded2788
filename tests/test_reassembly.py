"""Tests for multi-line reassembly of stack traces and exceptions."""
from __future__ import annotations

from pathlib import Path

import pytest

from logrelay.models import LogLevel, LogParseContext
from logrelay.parsers.arr import ARR_CONTINUATION_RULES, ARR_CORRELATION_PATTERNS, ArrLogParser
from logrelay.parsers.nlog import EMBY_CONTINUATION_RULES, EMBY_CORRELATION_PATTERNS, NlogParser
from logrelay.parsers.reassembly import (
    flush,
    is_continuation,
    iter_entries,
    parse_line_with_context,
    read_log_file,
)
from logrelay.parsers.serilog import JELLYFIN_CONTINUATION_RULES, JELLYFIN_CORRELATION_PATTERNS, SerilogParser


# ---------------------------------------------------------------------------
# is_continuation
# ---------------------------------------------------------------------------

class TestIsContinuation:
    @pytest.mark.parametrize("line", [
        "   at System.Foo.Bar()",
        "  at Emby.Server.Run() in /src/x.cs:line 12",
        "System.NullReferenceException: Object reference not set",
        "MediaBrowser.Model.Net.HttpException: 404",
        "---> System.IO.IOException: inner",
        "--- End of inner exception stack trace ---",
        "    some indented detail",
        "\tdetail after a tab",
        " Parameter name: itemId",
    ])
    def test_continuations(self, line: str) -> None:
        assert is_continuation(line, EMBY_CONTINUATION_RULES)

    @pytest.mark.parametrize("line", [
        "",
        "    ",
        "2024-01-15 10:30:45.123 Info Src: msg",
        "plain unindented text",
    ])
    def test_not_continuations(self, line: str) -> None:
        assert not is_continuation(line, EMBY_CONTINUATION_RULES)

    def test_indented_line_with_timestamp_is_new_entry(self) -> None:
        assert not is_continuation("  2024-01-15 10:30:45.123 Info Src: msg", EMBY_CONTINUATION_RULES)

    def test_jellyfin_bracket_anchor(self) -> None:
        line = "  [2024-01-15 10:30:45.123 +00:00] [INF] [1] Src: msg"
        assert not is_continuation(line, JELLYFIN_CONTINUATION_RULES)

    def test_arr_treats_any_unanchored_line_as_continuation(self) -> None:
        assert is_continuation("Some wrapped message text", ARR_CONTINUATION_RULES)
        assert not is_continuation("2024-01-15 10:30:45.1|Info|Src|msg", ARR_CONTINUATION_RULES)
        assert not is_continuation("", ARR_CONTINUATION_RULES)

    def test_foreign_namespace_is_not_exception(self) -> None:
        assert not is_continuation("Acme.Widget.BrokenException: nope", EMBY_CONTINUATION_RULES)


# ---------------------------------------------------------------------------
# parse_line_with_context
# ---------------------------------------------------------------------------

class TestParseLineWithContext:
    def _feed(self, lines: list[str]):
        parser = NlogParser()
        context = LogParseContext(file_path="embyserver.txt")
        results = [
            parse_line_with_context(line, context, parser.parse_line, parser.rules) for line in lines
        ]
        return results, context

    def test_first_entry_completes_nothing(self) -> None:
        results, context = self._feed(["2024-01-15 10:30:45.123 Info Src: one"])
        assert results[0].entry is not None
        assert not results[0].previous_complete
        assert results[0].completed is None
        assert context.previous_entry is results[0].entry

    def test_second_entry_completes_first(self) -> None:
        results, _ = self._feed([
            "2024-01-15 10:30:45.123 Info Src: one",
            "2024-01-15 10:30:46.123 Info Src: two",
        ])
        assert results[1].previous_complete
        assert results[1].completed is not None
        assert results[1].completed.message == "one"

    def test_continuation_is_buffered(self) -> None:
        results, context = self._feed([
            "2024-01-15 10:30:45.123 Error Src: failed",
            "System.NullReferenceException: Object reference not set",
            "   at Emby.Foo.Bar()",
        ])
        assert results[1].is_continuation and results[2].is_continuation
        assert results[1].entry is None
        assert not results[1].previous_complete
        assert context.continuation_lines == [
            "System.NullReferenceException: Object reference not set",
            "   at Emby.Foo.Bar()",
        ]

    def test_stack_trace_folded_into_completed_entry(self) -> None:
        results, context = self._feed([
            "2024-01-15 10:30:45.123 Error Src: failed",
            "System.NullReferenceException: Object reference not set",
            "   at Emby.Foo.Bar()",
            "2024-01-15 10:30:46.000 Info Src: next",
        ])
        done = results[3].completed
        assert done is not None
        assert done.exception == "System.NullReferenceException"
        assert done.message == "failed - Object reference not set"
        assert done.stack_trace == "System.NullReferenceException: Object reference not set\n   at Emby.Foo.Bar()"
        assert done.raw.startswith("2024-01-15 10:30:45.123 Error Src: failed\n")
        assert context.continuation_lines == []

    def test_exception_message_not_duplicated(self) -> None:
        results, _ = self._feed([
            "2024-01-15 10:30:45.123 Error Src: Object reference not set",
            "System.NullReferenceException: Object reference not set",
            "2024-01-15 10:30:46.000 Info Src: next",
        ])
        assert results[2].completed is not None
        assert results[2].completed.message == "Object reference not set"

    def test_unrecognised_line_leaves_context_alone(self) -> None:
        results, context = self._feed([
            "2024-01-15 10:30:45.123 Info Src: one",
            "garbage without structure",
        ])
        last = results[1]
        assert last.entry is None and not last.is_continuation and not last.previous_complete
        assert context.previous_entry is not None
        assert context.previous_entry.message == "one"

    def test_orphan_continuation_is_dropped(self) -> None:
        results, context = self._feed(["   at Emby.Foo.Bar()"])
        assert results[0].is_continuation
        assert context.continuation_lines == []

    def test_deterministic_with_fresh_context(self) -> None:
        parser = NlogParser()
        line = "2024-01-15 10:30:45.123 Info Src: one"
        a = parse_line_with_context(line, LogParseContext(), parser.parse_line, parser.rules)
        b = parse_line_with_context(line, LogParseContext(), parser.parse_line, parser.rules)
        assert a == b


def test_flush_returns_trailing_entry() -> None:
    parser = NlogParser()
    context = LogParseContext()
    parse_line_with_context("2024-01-15 10:30:45.123 Error Src: last", context, parser.parse_line, parser.rules)
    parse_line_with_context("   at Emby.Foo()", context, parser.parse_line, parser.rules)
    entry = flush(context, parser.rules)
    assert entry is not None
    assert entry.stack_trace == "   at Emby.Foo()"
    assert context.previous_entry is None
    assert flush(context, parser.rules) is None


# ---------------------------------------------------------------------------
# iter_entries / read_log_file
# ---------------------------------------------------------------------------

class TestIterEntries:
    def test_jellyfin_stream(self, jellyfin_lines: list[str]) -> None:
        entries = list(iter_entries(jellyfin_lines, SerilogParser(), JELLYFIN_CORRELATION_PATTERNS))
        assert [e.level for e in entries] == [LogLevel.INFO, LogLevel.ERROR, LogLevel.WARN]
        err = entries[1]
        assert err.exception == "System.IO.IOException"
        assert err.message == "Transcode failed - Disk full"
        assert err.stack_trace is not None and err.stack_trace.count("\n") == 2

    def test_emby_stream(self, emby_lines: list[str]) -> None:
        entries = list(iter_entries(emby_lines, NlogParser(), EMBY_CORRELATION_PATTERNS))
        assert len(entries) == 3
        assert entries[1].exception == "System.NullReferenceException"

    def test_arr_stream_enriches_metadata(self, sonarr_lines: list[str]) -> None:
        entries = list(iter_entries(sonarr_lines, ArrLogParser(), ARR_CORRELATION_PATTERNS))
        assert len(entries) == 3
        assert entries[1].exception == "NzbDrone.Core.Download.DownloadClientException"
        assert entries[1].metadata == {"download_id": "abc123"}
        assert entries[2].metadata == {"indexer": "NZBgeek"}

    def test_strips_line_endings(self) -> None:
        entries = list(iter_entries(["2024-01-15 10:30:45.123 Info Src: one\r\n"], NlogParser()))
        assert entries[0].raw == "2024-01-15 10:30:45.123 Info Src: one"

    def test_read_log_file(self, tmp_log_file, emby_lines: list[str]) -> None:
        path: Path = tmp_log_file(emby_lines, name="embyserver.txt")
        entries = list(read_log_file(str(path), NlogParser(), EMBY_CORRELATION_PATTERNS))
        assert len(entries) == 3
        assert entries[-1].message == "Simple message without source"

    def test_single_space_continuation_stays_with_entry(self) -> None:
        lines = [
            "2024-01-15 10:30:46.456 Error App: Error processing request",
            " Parameter name: itemId",
            "2024-01-15 10:30:47.789 Info App: next",
        ]
        entries = list(iter_entries(lines, NlogParser()))
        assert [e.message for e in entries] == ["Error processing request", "next"]
        assert entries[0].stack_trace == " Parameter name: itemId"
        assert entries[0].raw.endswith("\n Parameter name: itemId")

    def test_empty_input(self) -> None:
        assert list(iter_entries([], NlogParser())) == []
