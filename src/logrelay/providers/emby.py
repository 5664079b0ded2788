"""Emby: NLog space-delimited log format, push channel at ``/embywebsocket``."""
from __future__ import annotations

from typing import Any, Mapping

from ..models import LogLevel
from ..parsers.nlog import EMBY_CORRELATION_PATTERNS, EMBY_LOG_FILE_CONFIG, NlogParser
from .session_server import SessionServerDialect, SessionServerProvider


def emby_is_transcoding(session: Mapping[str, Any]) -> bool:
    # Emby reports direct-streamed video under TranscodingInfo too
    info = session.get("TranscodingInfo")
    return info is not None and not info.get("IsVideoDirect", False)


def emby_item_name(item: Mapping[str, Any]) -> str:
    name = str(item.get("Name", ""))
    series = item.get("SeriesName")
    if item.get("Type") == "Episode" and series:
        return f"{series} - {name}"
    return name


EMBY_DIALECT = SessionServerDialect(
    id="emby",
    name="Emby",
    parser=NlogParser(),
    correlation_patterns=EMBY_CORRELATION_PATTERNS,
    log_file_config=EMBY_LOG_FILE_CONFIG,
    socket_path="/embywebsocket",
    severities={
        "error": LogLevel.ERROR,
        "warn": LogLevel.WARN,
        "warning": LogLevel.WARN,
        "debug": LogLevel.DEBUG,
    },
    is_transcoding=emby_is_transcoding,
    item_name=emby_item_name,
)


def create_provider() -> SessionServerProvider:
    return SessionServerProvider(EMBY_DIALECT)
