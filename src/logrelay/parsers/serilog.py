"""Serilog-style log parser (Jellyfin).

Format: ``[2024-01-15 10:30:45.123 -05:00] [INF] [12] Jellyfin.Api.Controllers: Message``
"""
from __future__ import annotations

import re

from ..models import (
    CorrelationPattern,
    DefaultLogPaths,
    LogFileConfig,
    LogLevel,
    ParsedLogEntry,
)
from .base import ContinuationRules, map_level
from .timestamps import parse_timestamp

_LINE_RE = re.compile(
    r"^\[(?P<time>.+?)\]\s+"        # [timestamp with offset]
    r"\[(?P<level>\w{3})\]\s+"      # [INF]
    r"\[(?P<thread>\d+)\]\s+"       # [thread id]
    r"(?P<source>[^:]+):\s*"        # source component
    r"(?P<message>.*)$"
)

_LEVELS: dict[str, LogLevel] = {
    "VRB": LogLevel.TRACE,
    "DBG": LogLevel.DEBUG,
    "INF": LogLevel.INFO,
    "WRN": LogLevel.WARN,
    "ERR": LogLevel.ERROR,
    "FTL": LogLevel.FATAL,
}

JELLYFIN_CONTINUATION_RULES = ContinuationRules(
    exception_namespaces=("System", "Microsoft", "Jellyfin", "MediaBrowser", "NLog"),
    timestamp_anchor=re.compile(r"^\[\d{4}-\d{2}-\d{2}"),
)

JELLYFIN_CORRELATION_PATTERNS: tuple[CorrelationPattern, ...] = (
    CorrelationPattern("session_id", re.compile(r'Session(?:Id)?[=:\s]+"?([a-f0-9-]{32,36})"?', re.I)),
    CorrelationPattern("user_id", re.compile(r'User(?:Id)?[=:\s]+"?([a-f0-9-]{32,36})"?', re.I)),
    CorrelationPattern("device_id", re.compile(r'Device(?:Id)?[=:\s]+"?([^"\s,]+)"?', re.I)),
    CorrelationPattern("play_session_id", re.compile(r'PlaySessionId[=:\s]+"?([a-f0-9]+)"?', re.I)),
    CorrelationPattern("item_id", re.compile(r'Item(?:Id)?[=:\s]+"?([a-f0-9-]{32,36})"?', re.I)),
)

JELLYFIN_LOG_FILE_CONFIG = LogFileConfig(
    default_paths=DefaultLogPaths(
        docker=("/config/log",),
        linux=("/var/lib/jellyfin/log", "~/.local/share/jellyfin/log"),
        windows=("C:\\ProgramData\\Jellyfin\\Server\\log", "%LOCALAPPDATA%\\jellyfin\\log"),
        macos=("~/.local/share/jellyfin/log", "~/Library/Application Support/Jellyfin/log"),
    ),
    file_patterns=("log_*.log", "jellyfin*.log"),
    encoding="utf-8",
    rotates_daily=True,
    date_pattern=re.compile(r"log_(\d{8})\.log$"),
)


class SerilogParser:
    """Parse Serilog's bracketed ``[time] [LVL] [thread] source: message`` lines."""

    rules = JELLYFIN_CONTINUATION_RULES

    @property
    def name(self) -> str:
        return "serilog"

    def parse_line(self, line: str) -> ParsedLogEntry | None:
        stripped = line.strip()
        if not stripped:
            return None
        m = _LINE_RE.match(stripped)
        if not m:
            return None
        timestamp = parse_timestamp(m.group("time"))
        if timestamp is None:
            return None
        return ParsedLogEntry(
            timestamp=timestamp,
            level=map_level(m.group("level"), _LEVELS),
            message=m.group("message").strip(),
            source=m.group("source").strip(),
            thread_id=m.group("thread"),
            raw=line,
        )
