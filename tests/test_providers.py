"""Tests for provider adapters, normalization and the registry."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from logrelay.models import LogLevel, LogParseContext
from logrelay.providers.arr import ArrProvider, iso_utc, normalize_history_record
from logrelay.providers.base import (
    BaseProvider,
    CapabilityError,
    NotConnectedError,
    Provider,
    ProviderConfig,
    RealtimeUpdate,
)
from logrelay.providers.emby import EMBY_DIALECT
from logrelay.providers.jellyfin import JELLYFIN_DIALECT
from logrelay.providers.prowlarr import PROWLARR_FLAVOR
from logrelay.providers.radarr import RADARR_FLAVOR
from logrelay.providers.registry import ProviderRegistry, UnknownProviderError, build_default_registry
from logrelay.providers.session_server import (
    SESSIONS_SUBSCRIPTION,
    SessionServerProvider,
    normalize_activity,
    normalize_session,
    push_url,
)
from logrelay.providers.sonarr import SONARR_FLAVOR
from logrelay.transport.http import ErrorCategory, HttpError
from logrelay.transport.messages import Notification, PlaybackStarted, SessionsSnapshot

CONFIG = ProviderConfig(url="http://media.local:8096/", api_key="secret")


def _client(**returns: Any) -> AsyncMock:
    client = AsyncMock()
    for name, value in returns.items():
        getattr(client, name).return_value = value
    return client


def _session_provider(client: AsyncMock, dialect=JELLYFIN_DIALECT, **kwargs: Any) -> SessionServerProvider:
    return SessionServerProvider(dialect, client_factory=lambda url, key: client, **kwargs)


def _arr_provider(client: AsyncMock, flavor=SONARR_FLAVOR) -> ArrProvider:
    return ArrProvider(flavor, client_factory=lambda url, key, api_version: client)


# ---------------------------------------------------------------------------
# Shared contract
# ---------------------------------------------------------------------------

class TestProviderConfig:
    def test_trailing_slash_stripped(self) -> None:
        assert CONFIG.url == "http://media.local:8096"


class TestConnectionLifecycle:
    def test_data_methods_require_connect(self) -> None:
        provider = _session_provider(_client())
        with pytest.raises(NotConnectedError, match="Not connected to Jellyfin server"):
            asyncio.run(provider.get_sessions())

    def test_arr_data_methods_require_connect(self) -> None:
        provider = _arr_provider(_client())
        with pytest.raises(NotConnectedError):
            asyncio.run(provider.get_activity())

    def test_test_connection_before_connect(self) -> None:
        status = asyncio.run(_session_provider(_client()).test_connection())
        assert not status.connected
        assert status.error == "Not initialized"

    def test_failed_connect_stays_disconnected(self) -> None:
        client = _client()
        client.get_system_info.side_effect = HttpError("HTTP 401", ErrorCategory.UNAUTHORIZED, "http://x", 401)
        provider = _session_provider(client)
        with pytest.raises(HttpError):
            asyncio.run(provider.connect(CONFIG))
        assert not provider.connected
        client.close.assert_awaited_once()

    def test_connect_then_server_info(self) -> None:
        client = _client(get_system_info={"ServerName": "den", "Version": "10.9.0", "Id": "abc"})
        provider = _session_provider(client)

        async def scenario() -> Any:
            await provider.connect(CONFIG)
            return await provider.test_connection()

        status = asyncio.run(scenario())
        assert status.connected
        assert status.server_info is not None
        assert status.server_info.name == "den"
        assert status.server_info.version == "10.9.0"

    def test_test_connection_never_raises(self) -> None:
        client = _client(get_system_info={})
        provider = _session_provider(client)

        async def scenario() -> Any:
            await provider.connect(CONFIG)
            client.get_system_info.side_effect = HttpError(
                "Request timed out", ErrorCategory.TIMEOUT, "http://x"
            )
            return await provider.test_connection()

        status = asyncio.run(scenario())
        assert not status.connected
        assert status.error is not None and status.error.startswith("Request timed out")

    def test_disconnect_closes_client(self) -> None:
        client = _client(get_system_info={})
        provider = _session_provider(client)

        async def scenario() -> None:
            await provider.connect(CONFIG)
            await provider.disconnect()

        asyncio.run(scenario())
        assert not provider.connected
        client.close.assert_awaited_once()

    def test_log_path_override(self) -> None:
        client = _client(get_system_info={})
        provider = _session_provider(client)
        asyncio.run(provider.connect(ProviderConfig(url="http://x", api_key="k", log_path="/srv/logs")))
        assert provider.get_log_paths() == ["/srv/logs"]

    def test_satisfies_protocol(self) -> None:
        assert isinstance(_session_provider(_client()), Provider)
        assert isinstance(_arr_provider(_client()), Provider)

    def test_base_provider_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            BaseProvider(MagicMock(), (), MagicMock())  # type: ignore[abstract]


class TestLogSide:
    def test_parse_log_line_is_enriched(self) -> None:
        provider = _session_provider(_client())
        entry = provider.parse_log_line(
            "[2024-01-15 10:30:45.123 +00:00] [INF] [3] Session: Device=living-room-tv connected"
        )
        assert entry is not None
        assert entry.device_id == "living-room-tv"

    def test_context_parse_and_continuation(self) -> None:
        provider = _arr_provider(_client())
        context = LogParseContext()
        provider.parse_log_line_with_context("2024-01-15 10:30:45.1|Error|Src|boom", context)
        result = provider.parse_log_line_with_context("   at NzbDrone.Foo()", context)
        assert result.is_continuation
        assert provider.is_log_continuation("   at NzbDrone.Foo()")


# ---------------------------------------------------------------------------
# Session servers
# ---------------------------------------------------------------------------

RAW_SESSION = {
    "Id": "sess-1",
    "UserId": "user-1",
    "UserName": "alice",
    "DeviceId": "dev-1",
    "DeviceName": "Living Room",
    "Client": "Jellyfin Web",
    "ApplicationVersion": "10.9.0",
    "RemoteEndPoint": "192.168.1.20",
    "IsActive": True,
    "LastActivityDate": "2024-01-15T10:30:45.0000000Z",
    "NowPlayingItem": {
        "Id": "item-1",
        "Name": "Pilot",
        "SeriesName": "Show",
        "Type": "Episode",
        "RunTimeTicks": 36000000000,
    },
    "PlayState": {"PositionTicks": 12000000000, "IsPaused": False, "IsMuted": True},
    "TranscodingInfo": {
        "IsVideoDirect": True,
        "VideoCodec": "h264",
        "AudioCodec": "aac",
        "Container": "ts",
        "TranscodeReasons": ["AudioCodecNotSupported"],
    },
}


class TestSessionNormalization:
    def test_jellyfin_session(self) -> None:
        session = normalize_session(RAW_SESSION, JELLYFIN_DIALECT)
        assert session.id == session.external_id == "sess-1"
        assert session.last_activity == datetime(2024, 1, 15, 10, 30, 45, tzinfo=timezone.utc)
        assert session.client_name == "Jellyfin Web"
        now = session.now_playing
        assert now is not None
        assert now.item_name == "Pilot"
        assert now.is_transcoding
        assert now.is_muted and not now.is_paused
        assert now.position_ticks == 12000000000
        assert now.transcode_reasons == ("AudioCodecNotSupported",)

    def test_emby_direct_video_is_not_transcoding(self) -> None:
        now = normalize_session(RAW_SESSION, EMBY_DIALECT).now_playing
        assert now is not None
        assert not now.is_transcoding
        assert now.item_name == "Show - Pilot"

    def test_no_play_state_means_nothing_playing(self) -> None:
        raw = dict(RAW_SESSION)
        del raw["PlayState"]
        assert normalize_session(raw, JELLYFIN_DIALECT).now_playing is None

    def test_activity_severity(self) -> None:
        raw = {"Id": 7, "Name": "Login failed", "Type": "AuthenticationFailed", "Severity": "Warning",
               "Date": "2024-01-15T10:30:45Z", "ShortOverview": "From 10.0.0.1"}
        activity = normalize_activity(raw, JELLYFIN_DIALECT.severities)
        assert activity.id == "7"
        assert activity.severity is LogLevel.WARN
        assert activity.overview == "From 10.0.0.1"
        assert normalize_activity({"Severity": "Warn"}, EMBY_DIALECT.severities).severity is LogLevel.WARN
        assert normalize_activity({"Severity": "Information"}, JELLYFIN_DIALECT.severities).severity is LogLevel.INFO

    def test_get_activity_passes_since(self) -> None:
        client = _client(get_system_info={}, get_activity_log={"Items": [{"Id": 1, "Name": "x"}]})
        provider = _session_provider(client)
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)

        async def scenario() -> Any:
            await provider.connect(CONFIG)
            return await provider.get_activity(since)

        result = asyncio.run(scenario())
        assert [a.id for a in result] == ["1"]
        assert client.get_activity_log.await_args.kwargs["min_date"] == since


class TestPushUrl:
    def test_scheme_and_query(self) -> None:
        url = push_url("https://media.local", "/socket", "k", "dev")
        assert url == "wss://media.local/socket?api_key=k&deviceId=dev"
        assert push_url("http://h:8096", "/embywebsocket", "k", "d").startswith("ws://h:8096/embywebsocket?")


class TestRealtime:
    def _provider(self) -> tuple[SessionServerProvider, MagicMock, AsyncMock]:
        push = AsyncMock()
        factory = MagicMock(return_value=push)
        provider = _session_provider(_client(get_system_info={}), push_factory=factory)
        return provider, factory, push

    def test_start_realtime_subscribes(self) -> None:
        provider, factory, push = self._provider()

        async def scenario() -> None:
            await provider.connect(CONFIG)
            await provider.start_realtime(lambda update: None)

        asyncio.run(scenario())
        url = factory.call_args.args[0]
        assert url.startswith("ws://media.local:8096/socket?api_key=secret&deviceId=logrelay-")
        assert factory.call_args.kwargs["subscribe_frames"] == (SESSIONS_SUBSCRIPTION,)
        push.connect.assert_awaited_once()

    def test_stop_realtime_disconnects_push(self) -> None:
        provider, _, push = self._provider()

        async def scenario() -> None:
            await provider.connect(CONFIG)
            await provider.start_realtime(lambda update: None)
            await provider.disconnect()

        asyncio.run(scenario())
        push.disconnect.assert_awaited_once()

    def test_start_realtime_requires_connect(self) -> None:
        provider, _, _ = self._provider()
        with pytest.raises(NotConnectedError):
            asyncio.run(provider.start_realtime(lambda update: None))

    def test_start_realtime_without_config(self) -> None:
        provider, factory, _ = self._provider()
        provider._client = AsyncMock()
        with pytest.raises(NotConnectedError, match="Not connected to Jellyfin server"):
            asyncio.run(provider.start_realtime(lambda update: None))
        factory.assert_not_called()

    def test_listener_receives_normalized_updates(self) -> None:
        provider, _, _ = self._provider()
        updates: list[RealtimeUpdate] = []

        async def scenario() -> None:
            await provider.connect(CONFIG)
            await provider.start_realtime(updates.append)
            await provider._on_push_message(SessionsSnapshot(sessions=[RAW_SESSION, "junk"]))
            await provider._on_push_message(PlaybackStarted(data={"UserId": "u", "NowPlayingItem": {"Id": "i", "Name": "Film"}}))
            await provider._on_push_message(Notification(category="ServerRestarting"))

        asyncio.run(scenario())
        assert [u.kind for u in updates] == ["sessions", "playback_start", "notification"]
        assert len(updates[0].sessions) == 1
        assert updates[1].activity is not None
        assert updates[1].activity.name == "Playback started: Film"
        assert updates[1].activity.item_id == "i"
        assert updates[2].activity is not None
        assert updates[2].activity.severity is LogLevel.WARN

    def test_arr_has_no_realtime(self) -> None:
        provider = _arr_provider(_client())
        assert not provider.capabilities.supports_real_time_logs
        with pytest.raises(CapabilityError):
            asyncio.run(provider.start_realtime(lambda update: None))


# ---------------------------------------------------------------------------
# *arr providers
# ---------------------------------------------------------------------------

class TestArrHistory:
    def test_sonarr_grab(self) -> None:
        record = {
            "id": 42,
            "eventType": "grabbed",
            "date": "2024-01-15T10:30:45Z",
            "sourceTitle": "Show.S01E02.720p",
            "series": {"title": "Show"},
            "episode": {"seasonNumber": 1, "episodeNumber": 2, "title": "Second"},
            "episodeId": 99,
            "downloadId": "dl-1",
            "data": {"indexer": "NZBgeek"},
        }
        activity = normalize_history_record(record, SONARR_FLAVOR)
        assert activity.id == "sonarr-history-42"
        assert activity.type == "grabbed"
        assert activity.name == "Grabbed: Show S01E02"
        assert activity.overview == "Release grabbed: Show.S01E02.720p"
        assert activity.item_id == "99"
        assert activity.metadata == {"episodeId": 99, "downloadId": "dl-1", "indexer": "NZBgeek"}

    def test_numeric_event_code_matches_name(self) -> None:
        by_code = normalize_history_record({"id": 1, "eventType": 4, "data": {"message": "bad nzb"}}, SONARR_FLAVOR)
        by_name = normalize_history_record({"id": 1, "eventType": "downloadFailed", "data": {"message": "bad nzb"}}, SONARR_FLAVOR)
        assert by_code.type == by_name.type == "downloadFailed"
        assert by_code.severity is LogLevel.ERROR
        assert by_code.overview == "bad nzb"
        assert by_code.name == "Download Failed: Unknown Series"

    def test_radarr_title_with_year(self) -> None:
        record = {"id": 3, "eventType": 3, "movie": {"title": "Heat", "year": 1995}, "movieId": 5}
        activity = normalize_history_record(record, RADARR_FLAVOR)
        assert activity.name == "Imported: Heat (1995)"
        assert activity.overview == "Movie imported successfully"

    def test_prowlarr_failed_query(self) -> None:
        record = {"id": 8, "eventType": "indexerQuery", "indexer": {"name": "NZBgeek"},
                  "query": "heat 1995", "successful": False}
        activity = normalize_history_record(record, PROWLARR_FLAVOR)
        assert activity.type == "Query"
        assert activity.name == "Search: heat 1995"
        assert activity.overview == "Searched NZBgeek (failed)"
        assert activity.severity is LogLevel.ERROR

    def test_prowlarr_auth_is_warning(self) -> None:
        activity = normalize_history_record({"id": 9, "eventType": 4, "indexerId": 2}, PROWLARR_FLAVOR)
        assert activity.name == "Auth: Indexer #2"
        assert activity.severity is LogLevel.WARN


class TestArrProvider:
    def _connected(self, client: AsyncMock, flavor=SONARR_FLAVOR) -> ArrProvider:
        provider = _arr_provider(client, flavor)
        asyncio.run(provider.connect(CONFIG))
        return provider

    def test_server_info(self) -> None:
        client = _client(get_system_status={"appName": "Sonarr", "instanceName": "Sonarr 4K",
                                            "version": "4.0.1", "branch": "main"})
        info = asyncio.run(self._connected(client).get_server_info())
        assert info.name == "Sonarr 4K"
        assert info.id == "Sonarr-main"

    def test_activity_union_with_failing_history(self) -> None:
        client = _client(
            get_system_status={},
            get_health=[{"source": "IndexerCheck", "type": "warning", "message": "none"}],
            get_queue={"records": [{"title": "Stuck", "downloadId": "x", "errorMessage": "oops"}]},
        )
        client.get_history.side_effect = HttpError("HTTP 500", ErrorCategory.SERVER_ERROR, "http://x", 500)
        provider = self._connected(client)
        result = asyncio.run(provider.get_activity())
        assert [a.type for a in result] == ["health_warning", "queue_warning"]
        assert provider.failed_sources == ("history",)
        assert provider.activity_watermark(result) is None

    def test_watermark_is_newest_history_record(self) -> None:
        client = _client(
            get_system_status={},
            get_health=[{"source": "IndexerCheck", "type": "warning", "message": "none"}],
            get_queue={"records": []},
            get_history={"records": [
                {"id": 2, "eventType": 1, "date": "2024-01-15T09:00:00Z"},
                {"id": 1, "eventType": 1, "date": "2024-01-15T08:00:00Z"},
            ]},
        )
        provider = self._connected(client)
        result = asyncio.run(provider.get_activity())
        assert provider.failed_sources == ()
        assert provider.activity_watermark(result) == datetime(2024, 1, 15, 9, tzinfo=timezone.utc)
        assert provider.activity_watermark([a for a in result if a.type == "health_warning"]) is None

    def test_since_uses_history_since(self) -> None:
        client = _client(get_system_status={}, get_health=[], get_queue={"records": []},
                         get_history_since=[{"id": 1, "eventType": 1}])
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = asyncio.run(self._connected(client).get_activity(since))
        assert [a.id for a in result] == ["sonarr-history-1"]
        client.get_history_since.assert_awaited_once()
        assert client.get_history_since.await_args.args[0] == since
        client.get_history.assert_not_awaited()

    def test_page_sizes_forwarded(self) -> None:
        client = _client(get_system_status={}, get_health=[], get_queue={}, get_history={"records": []})
        asyncio.run(self._connected(client).get_activity(history_page_size=10, queue_page_size=20))
        assert client.get_history.await_args.kwargs["page_size"] == 10
        assert client.get_queue.await_args.kwargs["page_size"] == 20

    def test_prowlarr_skips_queue(self) -> None:
        client = _client(get_system_status={}, get_health=[], get_history={"records": []})
        asyncio.run(self._connected(client, PROWLARR_FLAVOR).get_activity())
        client.get_queue.assert_not_awaited()

    def test_sessions_and_users_empty(self) -> None:
        provider = self._connected(_client(get_system_status={}))
        assert asyncio.run(provider.get_sessions()) == []
        assert asyncio.run(provider.get_users()) == []


def test_iso_utc() -> None:
    assert iso_utc(datetime(2024, 1, 15, 10, 30, 45, 123456)) == "2024-01-15T10:30:45.123Z"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_builtins(self) -> None:
        assert build_default_registry().list_providers() == ["emby", "jellyfin", "prowlarr", "radarr", "sonarr"]

    def test_create_returns_fresh_instances(self) -> None:
        registry = build_default_registry()
        a = registry.create("jellyfin")
        b = registry.create("jellyfin")
        assert a is not b
        assert a.id == "jellyfin"

    def test_unknown(self) -> None:
        with pytest.raises(UnknownProviderError):
            ProviderRegistry().create("plex")

    def test_register_rejects_non_callable(self) -> None:
        with pytest.raises(TypeError):
            ProviderRegistry().register("bad", "not callable")  # type: ignore[arg-type]

    def test_create_rejects_non_provider(self) -> None:
        registry = ProviderRegistry()
        registry.register("odd", lambda: object())
        with pytest.raises(TypeError):
            registry.create("odd")

    def test_get(self) -> None:
        registry = build_default_registry()
        assert registry.get("sonarr") is not None
        assert registry.get("plex") is None
