"""Canonical, vendor-agnostic value objects.

Every provider produces these shapes regardless of the upstream format. They
are created per line, per request or per push message and never outlive the
call that produced them.
"""
from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class LogLevel(str, Enum):
    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


@dataclass(frozen=True)
class ParsedLogEntry:
    """One logical log entry, possibly assembled from several raw lines.

    ``raw`` always holds the untouched input. When continuation lines are
    folded in, ``raw`` is the original line plus every continuation line,
    joined with newlines.
    """

    timestamp: datetime
    level: LogLevel
    message: str
    raw: str
    source: str | None = None
    thread_id: str | None = None
    session_id: str | None = None
    user_id: str | None = None
    device_id: str | None = None
    item_id: str | None = None
    play_session_id: str | None = None
    metadata: dict[str, str] | None = None
    exception: str | None = None
    stack_trace: str | None = None


@dataclass
class LogParseContext:
    """Mutable cursor for one log stream.

    Owned by the single ingestion loop reading one (server, file) pair.
    """

    file_path: str = ""
    line_number: int = 0
    previous_entry: ParsedLogEntry | None = None
    continuation_lines: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class LogParseResult:
    entry: ParsedLogEntry | None
    is_continuation: bool
    previous_complete: bool
    # The previous entry with its continuation lines folded in; set exactly
    # when previous_complete is True.
    completed: ParsedLogEntry | None = None


@dataclass(frozen=True)
class CorrelationPattern:
    """A named regex whose single capturing group yields a correlation id."""

    name: str
    pattern: re.Pattern[str]

    def __post_init__(self) -> None:
        if self.pattern.groups != 1:
            raise ValueError(
                f"Correlation pattern {self.name!r} must have exactly one capturing group, "
                f"got {self.pattern.groups}"
            )


@dataclass(frozen=True)
class DefaultLogPaths:
    docker: tuple[str, ...] = ()
    linux: tuple[str, ...] = ()
    windows: tuple[str, ...] = ()
    macos: tuple[str, ...] = ()

    def for_family(self, family: str) -> tuple[str, ...]:
        return getattr(self, family, ())


@dataclass(frozen=True)
class LogFileConfig:
    """Where a vendor keeps its log files and how they are named."""

    default_paths: DefaultLogPaths
    file_patterns: tuple[str, ...]
    encoding: str = "utf-8"
    rotates_daily: bool = False
    date_pattern: re.Pattern[str] | None = None


@dataclass(frozen=True)
class ProviderCapabilities:
    supports_real_time_logs: bool
    supports_activity_log: bool
    supports_sessions: bool
    supports_webhooks: bool
    supports_playback_history: bool


@dataclass(frozen=True)
class ServerInfo:
    name: str
    version: str
    id: str


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    error: str | None = None
    server_info: ServerInfo | None = None


@dataclass(frozen=True)
class NowPlaying:
    item_id: str
    item_name: str
    item_type: str
    position_ticks: int
    duration_ticks: int
    is_paused: bool
    is_muted: bool
    is_transcoding: bool
    transcode_reasons: tuple[str, ...] | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    container: str | None = None


@dataclass(frozen=True)
class NormalizedSession:
    id: str
    external_id: str
    device_id: str
    started_at: datetime
    last_activity: datetime
    is_active: bool
    user_id: str | None = None
    user_name: str | None = None
    device_name: str | None = None
    client_name: str | None = None
    client_version: str | None = None
    ip_address: str | None = None
    now_playing: NowPlaying | None = None


@dataclass(frozen=True)
class NormalizedUser:
    id: str
    external_id: str
    name: str
    last_seen: datetime | None = None
    is_admin: bool | None = None


@dataclass(frozen=True)
class NormalizedActivity:
    id: str
    type: str
    name: str
    severity: LogLevel
    timestamp: datetime
    overview: str | None = None
    user_id: str | None = None
    item_id: str | None = None
    metadata: dict[str, Any] | None = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def to_dict(obj: Any) -> dict[str, Any]:
    """Serialize a model to a JSON-friendly dict, dropping ``None`` fields."""
    raw = dataclasses.asdict(obj)
    return {k: _jsonable(v) for k, v in raw.items() if v is not None}
