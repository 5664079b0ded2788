"""Pipe-delimited NLog parser for the *arr family (Sonarr, Radarr, Lidarr, Readarr, Prowlarr).

Format: ``2024-01-15 10:30:45.123|Info|ComponentName|Message here``

Stack traces follow on continuation lines without the prefix.
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
    r"^(?P<time>\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}(?:\.\d{1,7})?)\|"
    r"(?P<level>\w+)\|"
    r"(?P<source>[^|]+)\|"
    r"(?P<message>.*)$"
)

_LEVELS: dict[str, LogLevel] = {
    "Trace": LogLevel.TRACE,
    "Debug": LogLevel.DEBUG,
    "Info": LogLevel.INFO,
    "Warn": LogLevel.WARN,
    "Warning": LogLevel.WARN,
    "Error": LogLevel.ERROR,
    "Fatal": LogLevel.FATAL,
}

ARR_CONTINUATION_RULES = ContinuationRules(
    exception_namespaces=("System", "Microsoft", "NLog", "NzbDrone"),
    timestamp_anchor=_LINE_RE,
    unanchored_is_continuation=True,
)

ARR_CORRELATION_PATTERNS: tuple[CorrelationPattern, ...] = (
    CorrelationPattern("download_id", re.compile(r'DownloadId[=:\s]+"?([a-zA-Z0-9]+)"?', re.I)),
    CorrelationPattern("indexer", re.compile(r'Indexer[=:\s]+"?([^"\s,]+)"?', re.I)),
    CorrelationPattern("quality", re.compile(r'Quality[=:\s]+"?([^"\s,]+)"?', re.I)),
)


def _arr_log_file_config(app: str) -> LogFileConfig:
    title = app.capitalize()
    return LogFileConfig(
        default_paths=DefaultLogPaths(
            docker=("/config/logs",),
            linux=(f"~/.config/{title}/logs", f"/var/lib/{app}/logs", f"~/.local/share/{title}/logs"),
            windows=(
                f"%APPDATA%\\{title}\\logs",
                f"%LOCALAPPDATA%\\{title}\\logs",
                f"C:\\ProgramData\\{title}\\logs",
            ),
            macos=(f"~/.config/{title}/logs", f"~/Library/Application Support/{title}/logs"),
        ),
        file_patterns=(f"{app}.txt", f"{app}.*.txt", "*.log"),
        encoding="utf-8",
        rotates_daily=True,
        date_pattern=re.compile(rf"{app}\.(\d{{4}}-\d{{2}}-\d{{2}})\.txt$"),
    )


SONARR_LOG_FILE_CONFIG = _arr_log_file_config("sonarr")
RADARR_LOG_FILE_CONFIG = _arr_log_file_config("radarr")
LIDARR_LOG_FILE_CONFIG = _arr_log_file_config("lidarr")
READARR_LOG_FILE_CONFIG = _arr_log_file_config("readarr")
PROWLARR_LOG_FILE_CONFIG = _arr_log_file_config("prowlarr")


class ArrLogParser:
    """Parse the ``time|Level|Component|Message`` NLog layout used by *arr apps."""

    rules = ARR_CONTINUATION_RULES

    @property
    def name(self) -> str:
        return "arr"

    def parse_line(self, line: str) -> ParsedLogEntry | None:
        stripped = line.strip()
        if not stripped:
            return None
        m = _LINE_RE.match(stripped)
        if not m:
            return None
        timestamp = parse_timestamp(" ".join(m.group("time").split()))
        if timestamp is None:
            return None
        return ParsedLogEntry(
            timestamp=timestamp,
            level=map_level(m.group("level"), _LEVELS),
            message=m.group("message"),
            source=m.group("source"),
            raw=line,
        )
