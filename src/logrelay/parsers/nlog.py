"""NLog space-delimited log parser (Emby).

Formats, tried in order (first match wins):
    2024-01-15 10:30:45.123 Info HttpServer: HTTP Request completed
    2024-01-15 10:30:45.123 Info Simple message without source
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

_TIME = r"(?P<time>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3})"
_LEVEL = r"(?P<level>Trace|Debug|Info|Warn|Warning|Error|Fatal)"

_WITH_SOURCE_RE = re.compile(rf"^{_TIME} {_LEVEL} (?P<source>[^:]+): ?(?P<message>.*)$", re.I)
_NO_SOURCE_RE = re.compile(rf"^{_TIME} {_LEVEL} (?P<message>.+)$", re.I)

_LEVELS: dict[str, LogLevel] = {
    "trace": LogLevel.TRACE,
    "debug": LogLevel.DEBUG,
    "info": LogLevel.INFO,
    "warn": LogLevel.WARN,
    "warning": LogLevel.WARN,
    "error": LogLevel.ERROR,
    "fatal": LogLevel.FATAL,
}

EMBY_CONTINUATION_RULES = ContinuationRules(
    exception_namespaces=("System", "Microsoft", "Emby", "MediaBrowser"),
    timestamp_anchor=re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}"),
)

EMBY_CORRELATION_PATTERNS: tuple[CorrelationPattern, ...] = (
    CorrelationPattern("session_id", re.compile(r'Session(?:Id)?[=:\s]+"?([a-f0-9-]{32,36})"?', re.I)),
    CorrelationPattern("user_id", re.compile(r'User(?:Id)?[=:\s]+"?([a-f0-9-]{32,36})"?', re.I)),
    CorrelationPattern("device_id", re.compile(r'Device(?:Id)?[=:\s]+"?([^"\s,]+)"?', re.I)),
    CorrelationPattern("play_session_id", re.compile(r'PlaySessionId[=:\s]+"?([a-f0-9]+)"?', re.I)),
    CorrelationPattern("item_id", re.compile(r"(?:ItemId[=:\s]+|/Items/)([a-f0-9-]{32,36})", re.I)),
    CorrelationPattern("media_source_id", re.compile(r'MediaSourceId[=:\s]+"?([a-f0-9-]+)"?', re.I)),
    CorrelationPattern(
        "client_ip",
        re.compile(r"(?:RemoteEndPoint|ClientIP|from)\s*[=:\s]*(\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})", re.I),
    ),
)

EMBY_LOG_FILE_CONFIG = LogFileConfig(
    default_paths=DefaultLogPaths(
        docker=("/config/logs",),
        linux=("/var/lib/emby/logs", "/var/lib/emby-server/logs", "~/.local/share/emby/logs"),
        windows=("%PROGRAMDATA%\\Emby-Server\\logs", "%APPDATA%\\Emby-Server\\logs"),
        macos=("~/Library/Application Support/Emby-Server/logs",),
    ),
    file_patterns=("embyserver*.txt", "embyserver.txt", "server*.log", "hardware*.txt"),
    encoding="utf-8",
    rotates_daily=True,
    date_pattern=re.compile(r"embyserver_(\d{8})(?:_\d+)?\.txt$"),
)


class NlogParser:
    """Parse NLog ``time Level Source: message`` lines, with or without a source."""

    rules = EMBY_CONTINUATION_RULES

    @property
    def name(self) -> str:
        return "nlog"

    def parse_line(self, line: str) -> ParsedLogEntry | None:
        stripped = line.strip()
        if not stripped:
            return None
        m = _WITH_SOURCE_RE.match(stripped)
        source: str | None = None
        if m:
            source = m.group("source").strip()
        else:
            m = _NO_SOURCE_RE.match(stripped)
            if not m:
                return None
        timestamp = parse_timestamp(m.group("time"))
        if timestamp is None:
            return None
        return ParsedLogEntry(
            timestamp=timestamp,
            level=map_level(m.group("level").lower(), _LEVELS),
            message=m.group("message"),
            source=source,
            raw=line,
        )
