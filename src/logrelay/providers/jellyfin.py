"""Jellyfin: Serilog log format, push channel at ``/socket``."""
from __future__ import annotations

from ..models import LogLevel
from ..parsers.serilog import (
    JELLYFIN_CORRELATION_PATTERNS,
    JELLYFIN_LOG_FILE_CONFIG,
    SerilogParser,
)
from .session_server import SessionServerDialect, SessionServerProvider

JELLYFIN_DIALECT = SessionServerDialect(
    id="jellyfin",
    name="Jellyfin",
    parser=SerilogParser(),
    correlation_patterns=JELLYFIN_CORRELATION_PATTERNS,
    log_file_config=JELLYFIN_LOG_FILE_CONFIG,
    socket_path="/socket",
    severities={
        "error": LogLevel.ERROR,
        "warning": LogLevel.WARN,
        "debug": LogLevel.DEBUG,
    },
)


def create_provider() -> SessionServerProvider:
    return SessionServerProvider(JELLYFIN_DIALECT)
