"""Multi-line reassembly: fold stack traces and exception details into entries.

Each log stream is driven through one ``LogParseContext``. A line is either

* a continuation (stack frame, exception declaration, inner-exception
  marker, "--- End of" marker, or indented text without a timestamp) and is
  buffered onto the previous entry, or
* a new entry, which completes the previous one, or
* neither, and is dropped without touching the context.

Detection order is fixed and the first matching rule wins, so the same
(line, context) pair always classifies the same way.
"""
from __future__ import annotations

import dataclasses
import logging
import re
from typing import Callable, Iterable, Iterator

from ..correlation import enrich
from ..models import CorrelationPattern, LogParseContext, LogParseResult, ParsedLogEntry
from .base import ContinuationRules, LineParser

logger = logging.getLogger(__name__)

_STACK_FRAME_RE = re.compile(r"^\s{2,}at\s+")
_INNER_EXCEPTION_RE = re.compile(r"^--->")
_END_OF_RE = re.compile(r"^---\s+End of")
_INDENT_RE = re.compile(r"^[ \t]")

LineFn = Callable[[str], "ParsedLogEntry | None"]


def is_continuation(line: str, rules: ContinuationRules) -> bool:
    """Return True when ``line`` extends the previous entry rather than starting one."""
    stripped = line.strip()
    if not stripped:
        return False
    if _STACK_FRAME_RE.match(line):
        return True
    if rules.exception_re.match(stripped):
        return True
    if _INNER_EXCEPTION_RE.match(stripped) or _END_OF_RE.match(stripped):
        return True
    if rules.timestamp_anchor.match(stripped):
        return False
    if rules.unanchored_is_continuation:
        return True
    return bool(_INDENT_RE.match(line))


def fold_continuation(
    entry: ParsedLogEntry, lines: list[str], rules: ContinuationRules
) -> ParsedLogEntry:
    """Merge buffered continuation lines into ``entry``.

    The first exception declaration found sets ``exception``; its message is
    appended to the entry message unless already present.
    """
    if not lines:
        return entry
    message = entry.message
    exception: str | None = None
    for line in lines:
        m = rules.exception_re.match(line.strip())
        if m:
            exception = m.group(1)
            detail = m.group(2).strip()
            if detail and detail not in message:
                message = f"{message} - {detail}"
            break
    trace = "\n".join(lines)
    return dataclasses.replace(
        entry,
        message=message,
        exception=exception,
        stack_trace=trace,
        raw=f"{entry.raw}\n{trace}",
    )


def parse_line_with_context(
    line: str,
    context: LogParseContext,
    parse_line: LineFn,
    rules: ContinuationRules,
) -> LogParseResult:
    """Feed one raw line through the reassembly state machine."""
    if is_continuation(line, rules):
        if context.previous_entry is not None:
            context.continuation_lines.append(line)
        else:
            logger.debug("Orphan continuation at %s:%d", context.file_path, context.line_number)
        return LogParseResult(entry=None, is_continuation=True, previous_complete=False)

    entry = parse_line(line)
    if entry is None:
        logger.debug("Unparsed line at %s:%d", context.file_path, context.line_number)
        return LogParseResult(entry=None, is_continuation=False, previous_complete=False)

    completed: ParsedLogEntry | None = None
    if context.previous_entry is not None:
        completed = fold_continuation(context.previous_entry, context.continuation_lines, rules)
    context.previous_entry = entry
    context.continuation_lines = []
    return LogParseResult(
        entry=entry,
        is_continuation=False,
        previous_complete=completed is not None,
        completed=completed,
    )


def flush(context: LogParseContext, rules: ContinuationRules) -> ParsedLogEntry | None:
    """Finalize the pending entry at end of stream and reset the context."""
    pending = context.previous_entry
    if pending is None:
        return None
    completed = fold_continuation(pending, context.continuation_lines, rules)
    context.previous_entry = None
    context.continuation_lines = []
    return completed


def iter_entries(
    lines: Iterable[str],
    parser: LineParser,
    patterns: Iterable[CorrelationPattern] = (),
    file_path: str = "",
) -> Iterator[ParsedLogEntry]:
    """Yield complete, correlation-enriched entries from raw lines.

    One context is created per call, so each call owns exactly one stream.
    """
    patterns = tuple(patterns)

    def _parse(raw: str) -> ParsedLogEntry | None:
        entry = parser.parse_line(raw)
        return enrich(entry, patterns) if entry is not None else None

    context = LogParseContext(file_path=file_path)
    for number, raw in enumerate(lines, start=1):
        context.line_number = number
        result = parse_line_with_context(raw.rstrip("\r\n"), context, _parse, parser.rules)
        if result.completed is not None:
            yield result.completed
    last = flush(context, parser.rules)
    if last is not None:
        yield last


def read_log_file(
    path: str,
    parser: LineParser,
    patterns: Iterable[CorrelationPattern] = (),
    encoding: str = "utf-8",
) -> Iterator[ParsedLogEntry]:
    """Stream-parse a log file. Memory usage: one logical entry at a time."""
    with open(path, encoding=encoding, errors="replace") as f:
        yield from iter_entries(f, parser, patterns, file_path=path)
