"""Provider capability contract.

Every vendor adapter satisfies ``Provider``. Callers branch only on
``ProviderCapabilities``, never on the concrete adapter type.

Third-party adapters plug in through entry points::

    [project.entry-points."logrelay.providers"]
    lidarr = "my_package.lidarr:create_provider"
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, Sequence, runtime_checkable

from ..correlation import enrich
from ..logfiles import default_log_paths
from ..models import (
    ConnectionStatus,
    CorrelationPattern,
    LogFileConfig,
    LogParseContext,
    LogParseResult,
    NormalizedActivity,
    NormalizedSession,
    NormalizedUser,
    ParsedLogEntry,
    ProviderCapabilities,
    ServerInfo,
)
from ..parsers.base import LineParser
from ..parsers.reassembly import is_continuation, parse_line_with_context
from ..transport.http import HttpError

logger = logging.getLogger(__name__)


class NotConnectedError(RuntimeError):
    """A data method was called before a successful ``connect()``."""


class CapabilityError(RuntimeError):
    """The operation needs a capability this provider does not advertise."""


@dataclass(frozen=True)
class ProviderConfig:
    url: str
    api_key: str
    log_path: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", self.url.rstrip("/"))


@dataclass(frozen=True)
class RealtimeUpdate:
    """One push-channel event, normalized.

    ``kind`` is one of ``sessions``, ``playback_start``, ``playback_stop``,
    ``playback_progress`` or ``notification``.
    """

    kind: str
    sessions: tuple[NormalizedSession, ...] = ()
    activity: NormalizedActivity | None = None
    received_at: datetime | None = None
    raw: Any = field(default=None, compare=False, repr=False)


RealtimeListener = Callable[[RealtimeUpdate], "Awaitable[None] | None"]


@runtime_checkable
class Provider(Protocol):
    id: str
    name: str
    capabilities: ProviderCapabilities

    async def connect(self, config: ProviderConfig) -> None:
        """Bind to a server and verify it with a live round-trip.

        Raises the transport error on failure and stays disconnected.
        """
        ...

    async def disconnect(self) -> None: ...

    async def test_connection(self) -> ConnectionStatus:
        """Check the server with a live round-trip. Never raises."""
        ...

    def get_log_paths(self) -> list[str]: ...

    def get_log_file_config(self) -> LogFileConfig: ...

    @property
    def line_parser(self) -> LineParser:
        """Parser for this provider's log dialect, used by file ingestion."""
        ...

    def parse_log_line(self, line: str) -> ParsedLogEntry | None: ...

    def parse_log_line_with_context(self, line: str, context: LogParseContext) -> LogParseResult: ...

    def is_log_continuation(self, line: str) -> bool: ...

    def get_correlation_patterns(self) -> Sequence[CorrelationPattern]: ...

    async def get_sessions(self) -> list[NormalizedSession]: ...

    async def get_users(self) -> list[NormalizedUser]: ...

    async def get_activity(self, since: datetime | None = None) -> list[NormalizedActivity]: ...

    async def get_server_info(self) -> ServerInfo: ...

    def activity_watermark(self, activities: Sequence[NormalizedActivity]) -> datetime | None: ...

    async def start_realtime(self, listener: RealtimeListener) -> None: ...

    async def stop_realtime(self) -> None: ...


class BaseProvider(ABC):
    """Log-side plumbing and connection bookkeeping shared by concrete adapters.

    Subclasses set ``id``, ``name`` and ``capabilities`` and implement
    ``connect`` plus the data methods; everything that only depends on the
    log dialect lives here.
    """

    id: str
    name: str
    capabilities: ProviderCapabilities
    #: names of the poll sources that failed during the last ``get_activity``
    failed_sources: tuple[str, ...] = ()

    def __init__(
        self,
        parser: LineParser,
        correlation_patterns: Sequence[CorrelationPattern],
        log_file_config: LogFileConfig,
    ) -> None:
        self._parser = parser
        self._patterns = tuple(correlation_patterns)
        self._log_file_config = log_file_config
        self._config: ProviderConfig | None = None
        self._client: Any = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _require_client(self) -> Any:
        if self._client is None:
            raise NotConnectedError(f"Not connected to {self.name} server")
        return self._client

    async def disconnect(self) -> None:
        await self.stop_realtime()
        client, self._client = self._client, None
        self._config = None
        if client is not None:
            await client.close()

    @abstractmethod
    async def connect(self, config: ProviderConfig) -> None: ...

    @abstractmethod
    async def get_server_info(self) -> ServerInfo: ...

    @abstractmethod
    async def get_sessions(self) -> list[NormalizedSession]: ...

    @abstractmethod
    async def get_users(self) -> list[NormalizedUser]: ...

    @abstractmethod
    async def get_activity(self, since: datetime | None = None) -> list[NormalizedActivity]: ...

    def activity_watermark(self, activities: Sequence[NormalizedActivity]) -> datetime | None:
        """Instant the next incremental ``get_activity`` should resume from.

        ``None`` means the watermark must not move.
        """
        if not activities:
            return None
        return max(a.timestamp for a in activities)

    async def test_connection(self) -> ConnectionStatus:
        if self._client is None:
            return ConnectionStatus(connected=False, error="Not initialized")
        try:
            info = await self.get_server_info()
        except HttpError as exc:
            logger.debug("Connection test for %s failed: %s", self.id, exc)
            return ConnectionStatus(connected=False, error=f"{exc} {exc.suggestion}")
        except Exception as exc:
            logger.debug("Connection test for %s failed: %s", self.id, exc)
            return ConnectionStatus(connected=False, error=str(exc) or type(exc).__name__)
        return ConnectionStatus(connected=True, server_info=info)

    # ------------------------------------------------------------------
    # Log files
    # ------------------------------------------------------------------

    def get_log_paths(self) -> list[str]:
        if self._config is not None and self._config.log_path:
            return [self._config.log_path]
        return default_log_paths(self._log_file_config)

    def get_log_file_config(self) -> LogFileConfig:
        return self._log_file_config

    @property
    def line_parser(self) -> LineParser:
        return self._parser

    def parse_log_line(self, line: str) -> ParsedLogEntry | None:
        entry = self._parser.parse_line(line)
        if entry is None:
            return None
        return enrich(entry, self._patterns)

    def parse_log_line_with_context(self, line: str, context: LogParseContext) -> LogParseResult:
        return parse_line_with_context(line, context, self.parse_log_line, self._parser.rules)

    def is_log_continuation(self, line: str) -> bool:
        return is_continuation(line, self._parser.rules)

    def get_correlation_patterns(self) -> Sequence[CorrelationPattern]:
        return self._patterns

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def start_realtime(self, listener: RealtimeListener) -> None:
        raise CapabilityError(f"{self.name} does not support real-time updates")

    async def stop_realtime(self) -> None:
        return None
