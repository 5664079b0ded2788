"""Adapter for session-based media servers (Jellyfin, Emby).

Both servers share one REST surface and one push protocol; they differ in
log dialect, push socket path and a few normalization rules. Those
differences live in a ``SessionServerDialect`` so one provider class serves
both.
"""
from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import urlencode

from ..config import settings
from ..models import (
    CorrelationPattern,
    LogFileConfig,
    LogLevel,
    NormalizedActivity,
    NormalizedSession,
    NormalizedUser,
    NowPlaying,
    ProviderCapabilities,
    ServerInfo,
)
from ..parsers.base import LineParser
from ..parsers.timestamps import parse_api_datetime
from ..transport.http import JsonHttpClient
from ..transport.messages import (
    Notification,
    PlaybackProgress,
    PlaybackStarted,
    PlaybackStopped,
    PushMessage,
    SessionsSnapshot,
    encode_frame,
)
from ..transport.push import PushClient
from .base import BaseProvider, NotConnectedError, ProviderConfig, RealtimeListener, RealtimeUpdate

logger = logging.getLogger(__name__)

SESSION_SERVER_CAPABILITIES = ProviderCapabilities(
    supports_real_time_logs=True,
    supports_activity_log=True,
    supports_sessions=True,
    supports_webhooks=True,
    supports_playback_history=True,
)

# Ask the server to push the session list immediately, then every 1500 ms
SESSIONS_SUBSCRIPTION = encode_frame("SessionsStart", "0,1500")

_NOTIFICATION_SEVERITY: dict[str, LogLevel] = {
    "ServerRestarting": LogLevel.WARN,
    "ServerShuttingDown": LogLevel.WARN,
}


def transcoding_present(session: Mapping[str, Any]) -> bool:
    return session.get("TranscodingInfo") is not None


def plain_item_name(item: Mapping[str, Any]) -> str:
    return str(item.get("Name", ""))


@dataclass(frozen=True)
class SessionServerDialect:
    """Everything that distinguishes one session server from another.

    Attributes:
        id, name:              Provider identity.
        parser:                Line parser for the server's log format.
        correlation_patterns:  Ordered patterns applied to every message.
        log_file_config:       Default log locations and file name patterns.
        socket_path:           Push channel path, e.g. ``/socket``.
        severities:            Activity-log severity (lower-cased) to level.
        is_transcoding:        Decides ``NowPlaying.is_transcoding`` from a raw session.
        item_name:             Display name for a now-playing item.
    """

    id: str
    name: str
    parser: LineParser
    correlation_patterns: tuple[CorrelationPattern, ...]
    log_file_config: LogFileConfig
    socket_path: str
    severities: Mapping[str, LogLevel]
    is_transcoding: Callable[[Mapping[str, Any]], bool] = transcoding_present
    item_name: Callable[[Mapping[str, Any]], str] = plain_item_name
    capabilities: ProviderCapabilities = SESSION_SERVER_CAPABILITIES


class SessionServerClient(JsonHttpClient):
    """REST endpoints common to Jellyfin and Emby."""

    def __init__(self, base_url: str, api_key: str, **kwargs: Any) -> None:
        super().__init__(base_url, {"X-Emby-Token": api_key}, **kwargs)

    async def get_system_info(self) -> dict[str, Any]:
        return await self.get_json("/System/Info")

    async def get_sessions(self) -> list[dict[str, Any]]:
        return await self.get_json("/Sessions") or []

    async def get_users(self) -> list[dict[str, Any]]:
        return await self.get_json("/Users") or []

    async def get_activity_log(
        self,
        start_index: int = 0,
        limit: int = 100,
        min_date: datetime | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"StartIndex": start_index, "Limit": limit}
        if min_date is not None:
            params["MinDate"] = min_date.isoformat()
        return await self.get_json("/System/ActivityLog/Entries", params) or {}


def push_url(base_url: str, socket_path: str, api_key: str, device_id: str) -> str:
    """Derive the websocket URL from the REST base URL."""
    if base_url.startswith("https://"):
        ws_base = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        ws_base = "ws://" + base_url[len("http://"):]
    else:
        ws_base = base_url
    query = urlencode({"api_key": api_key, "deviceId": device_id})
    return f"{ws_base}{socket_path}?{query}"


# ----------------------------------------------------------------------
# Normalization
# ----------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ticks(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_session(raw: Mapping[str, Any], dialect: SessionServerDialect) -> NormalizedSession:
    last_activity = parse_api_datetime(raw.get("LastActivityDate")) or _now()
    item = raw.get("NowPlayingItem")
    play_state = raw.get("PlayState")
    now_playing: NowPlaying | None = None
    if item is not None and play_state is not None:
        transcoding = raw.get("TranscodingInfo") or {}
        reasons = transcoding.get("TranscodeReasons")
        now_playing = NowPlaying(
            item_id=str(item.get("Id", "")),
            item_name=dialect.item_name(item),
            item_type=str(item.get("Type", "")),
            position_ticks=_ticks(play_state.get("PositionTicks")),
            duration_ticks=_ticks(item.get("RunTimeTicks")),
            is_paused=bool(play_state.get("IsPaused", False)),
            is_muted=bool(play_state.get("IsMuted", False)),
            is_transcoding=dialect.is_transcoding(raw),
            transcode_reasons=tuple(reasons) if reasons else None,
            video_codec=transcoding.get("VideoCodec"),
            audio_codec=transcoding.get("AudioCodec"),
            container=transcoding.get("Container"),
        )
    return NormalizedSession(
        id=str(raw.get("Id", "")),
        external_id=str(raw.get("Id", "")),
        device_id=str(raw.get("DeviceId", "")),
        started_at=last_activity,
        last_activity=last_activity,
        is_active=bool(raw.get("IsActive", False)),
        user_id=raw.get("UserId"),
        user_name=raw.get("UserName"),
        device_name=raw.get("DeviceName"),
        client_name=raw.get("Client"),
        client_version=raw.get("ApplicationVersion"),
        ip_address=raw.get("RemoteEndPoint"),
        now_playing=now_playing,
    )


def normalize_user(raw: Mapping[str, Any]) -> NormalizedUser:
    policy = raw.get("Policy") or {}
    return NormalizedUser(
        id=str(raw.get("Id", "")),
        external_id=str(raw.get("Id", "")),
        name=str(raw.get("Name", "")),
        last_seen=parse_api_datetime(raw.get("LastActivityDate")),
        is_admin=policy.get("IsAdministrator"),
    )


def normalize_activity(raw: Mapping[str, Any], severities: Mapping[str, LogLevel]) -> NormalizedActivity:
    severity = str(raw.get("Severity") or "").lower()
    return NormalizedActivity(
        id=str(raw.get("Id", "")),
        type=str(raw.get("Type", "")),
        name=str(raw.get("Name", "")),
        overview=raw.get("Overview") or raw.get("ShortOverview"),
        severity=severities.get(severity, LogLevel.INFO),
        timestamp=parse_api_datetime(raw.get("Date")) or _now(),
        user_id=raw.get("UserId"),
        item_id=raw.get("ItemId"),
    )


def _playback_activity(provider_id: str, kind: str, data: Mapping[str, Any], dialect: SessionServerDialect) -> NormalizedActivity:
    item = data.get("NowPlayingItem") or data.get("Item") or {}
    stamp = _now()
    labels = {
        "playback_start": "Playback started",
        "playback_stop": "Playback stopped",
        "playback_progress": "Playback progress",
    }
    metadata = {
        k: v
        for k, v in {
            "sessionId": data.get("Id") or data.get("SessionId"),
            "deviceId": data.get("DeviceId"),
            "playSessionId": data.get("PlaySessionId"),
        }.items()
        if v is not None
    }
    name = dialect.item_name(item) if item else ""
    return NormalizedActivity(
        id=f"{provider_id}-{kind}-{int(stamp.timestamp() * 1000)}",
        type=kind,
        name=f"{labels[kind]}: {name}" if name else labels[kind],
        severity=LogLevel.INFO,
        timestamp=stamp,
        user_id=data.get("UserId"),
        item_id=item.get("Id") or data.get("ItemId"),
        metadata=metadata or None,
    )


# ----------------------------------------------------------------------
# Provider
# ----------------------------------------------------------------------


class SessionServerProvider(BaseProvider):
    """Provider for servers speaking the Jellyfin/Emby REST and push APIs."""

    def __init__(
        self,
        dialect: SessionServerDialect,
        *,
        client_factory: Callable[..., SessionServerClient] = SessionServerClient,
        push_factory: Callable[..., PushClient] = PushClient,
    ) -> None:
        super().__init__(dialect.parser, dialect.correlation_patterns, dialect.log_file_config)
        self.dialect = dialect
        self.id = dialect.id
        self.name = dialect.name
        self.capabilities = dialect.capabilities
        self._client_factory = client_factory
        self._push_factory = push_factory
        self._push: PushClient | None = None
        self._listener: RealtimeListener | None = None

    async def connect(self, config: ProviderConfig) -> None:
        if self._client is not None:
            await self.disconnect()
        client = self._client_factory(config.url, config.api_key)
        try:
            await client.get_system_info()
        except Exception:
            await client.close()
            raise
        self._config = config
        self._client = client
        logger.info("Connected to %s at %s", self.name, config.url)

    async def get_server_info(self) -> ServerInfo:
        info = await self._require_client().get_system_info()
        return ServerInfo(
            name=str(info.get("ServerName", "")),
            version=str(info.get("Version", "")),
            id=str(info.get("Id", "")),
        )

    async def get_sessions(self) -> list[NormalizedSession]:
        raw = await self._require_client().get_sessions()
        return [normalize_session(s, self.dialect) for s in raw]

    async def get_users(self) -> list[NormalizedUser]:
        raw = await self._require_client().get_users()
        return [normalize_user(u) for u in raw]

    async def get_activity(self, since: datetime | None = None) -> list[NormalizedActivity]:
        result = await self._require_client().get_activity_log(
            start_index=0, limit=settings.activity_limit, min_date=since
        )
        return [normalize_activity(item, self.dialect.severities) for item in result.get("Items") or []]

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def start_realtime(self, listener: RealtimeListener) -> None:
        self._require_client()
        config = self._config
        if config is None:
            raise NotConnectedError(f"Not connected to {self.name} server")
        if self._push is not None:
            self._listener = listener
            return
        device_id = f"logrelay-{int(time.time() * 1000)}"
        url = push_url(config.url, self.dialect.socket_path, config.api_key, device_id)
        self._listener = listener
        self._push = self._push_factory(
            url,
            self._on_push_message,
            subscribe_frames=(SESSIONS_SUBSCRIPTION,),
        )
        await self._push.connect()

    async def stop_realtime(self) -> None:
        push, self._push = self._push, None
        self._listener = None
        if push is not None:
            await push.disconnect()

    def to_update(self, message: PushMessage) -> RealtimeUpdate | None:
        """Map a decoded push message to a normalized update."""
        received = _now()
        if isinstance(message, SessionsSnapshot):
            sessions = tuple(normalize_session(s, self.dialect) for s in message.sessions if isinstance(s, dict))
            return RealtimeUpdate(kind="sessions", sessions=sessions, received_at=received, raw=message)
        kinds: Sequence[tuple[type, str]] = (
            (PlaybackStarted, "playback_start"),
            (PlaybackStopped, "playback_stop"),
            (PlaybackProgress, "playback_progress"),
        )
        for cls, kind in kinds:
            if isinstance(message, cls):
                activity = _playback_activity(self.id, kind, message.data, self.dialect)
                return RealtimeUpdate(kind=kind, activity=activity, received_at=received, raw=message)
        if isinstance(message, Notification):
            activity = NormalizedActivity(
                id=f"{self.id}-{message.category}-{int(received.timestamp() * 1000)}",
                type=message.category,
                name=message.category,
                severity=_NOTIFICATION_SEVERITY.get(message.category, LogLevel.INFO),
                timestamp=received,
            )
            return RealtimeUpdate(kind="notification", activity=activity, received_at=received, raw=message)
        return None

    async def _on_push_message(self, message: PushMessage) -> None:
        listener = self._listener
        if listener is None:
            return
        update = self.to_update(message)
        if update is None:
            return
        result = listener(update)
        if inspect.isawaitable(result):
            await result
