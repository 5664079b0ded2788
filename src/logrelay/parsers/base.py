"""Line parser protocol implemented by every vendor log dialect."""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property
from typing import Mapping, Protocol, runtime_checkable

from ..models import LogLevel, ParsedLogEntry


@dataclass(frozen=True)
class ContinuationRules:
    """How a dialect recognises lines that extend the previous entry.

    Attributes:
        exception_namespaces:  Root namespaces of exception declarations,
                               e.g. ``("System", "Microsoft")``.
        timestamp_anchor:      Regex matching the start of a new entry.
        unanchored_is_continuation:
                               Treat every non-blank line lacking the anchor
                               as a continuation, indented or not.
    """

    exception_namespaces: tuple[str, ...]
    timestamp_anchor: re.Pattern[str]
    unanchored_is_continuation: bool = False

    @cached_property
    def exception_re(self) -> re.Pattern[str]:
        names = "|".join(re.escape(n) for n in self.exception_namespaces)
        return re.compile(rf"^((?:{names})\.[\w.`]*Exception):\s*(.*)$", re.IGNORECASE)


@runtime_checkable
class LineParser(Protocol):
    """Protocol for vendor line parsers; duck-typed, no inheritance required."""

    rules: ContinuationRules

    @property
    def name(self) -> str:
        """Dialect name (e.g. 'serilog', 'nlog')."""
        ...

    def parse_line(self, line: str) -> ParsedLogEntry | None:
        """Parse one raw line. Returns None if it does not start a new entry."""
        ...


def map_level(token: str, table: Mapping[str, LogLevel]) -> LogLevel:
    """Map a vendor level token to the canonical level; unknown tokens are info."""
    return table.get(token, LogLevel.INFO)
