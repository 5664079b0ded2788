"""Adapter for poll-based download managers (the *arr family).

These apps have no push channel and no playback sessions. Their activity is
the union of three REST categories, fetched concurrently through the poll
aggregator:

* health   ``GET /api/{v}/health``   warnings and errors only
* history  ``GET /api/{v}/history``  or ``/history/since`` with a watermark
* queue    ``GET /api/{v}/queue``    items with a warning or error message

Per-app differences (API version, include flags, event table, titles) are
captured by an ``ArrFlavor``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from ..config import settings
from ..models import (
    LogFileConfig,
    LogLevel,
    NormalizedActivity,
    NormalizedSession,
    NormalizedUser,
    ProviderCapabilities,
    ServerInfo,
)
from ..parsers.arr import ARR_CORRELATION_PATTERNS, ArrLogParser
from ..parsers.timestamps import parse_api_datetime
from ..poll.aggregator import PollAggregator, PollSource, normalize_health, normalize_queue
from ..poll.events import activity_type_for, resolve_event_name, severity_for
from ..transport.http import JsonHttpClient
from .base import BaseProvider, ProviderConfig

logger = logging.getLogger(__name__)

ARR_CAPABILITIES = ProviderCapabilities(
    supports_real_time_logs=False,
    supports_activity_log=True,
    supports_sessions=False,
    supports_webhooks=True,
    supports_playback_history=False,
)

# (record, event name, activity type) -> (title, overview)
Describe = Callable[[Mapping[str, Any], str, str], "tuple[str, str]"]


def default_severity(activity_type: str, record: Mapping[str, Any]) -> LogLevel:
    return severity_for(activity_type)


@dataclass(frozen=True)
class ArrFlavor:
    """What distinguishes one *arr app from another."""

    id: str
    name: str
    log_file_config: LogFileConfig
    event_names: Mapping[int, str]
    describe: Describe
    item_id: Callable[[Mapping[str, Any]], "str | None"]
    metadata: Callable[[Mapping[str, Any]], "dict[str, Any]"]
    api_version: str = "v3"
    event_aliases: Mapping[str, str] = field(default_factory=dict)
    classify: Callable[[str], str] = activity_type_for
    severity: Callable[[str, Mapping[str, Any]], LogLevel] = default_severity
    history_params: Mapping[str, Any] = field(default_factory=dict)
    queue_params: Mapping[str, Any] = field(default_factory=dict)
    has_health: bool = True
    has_queue: bool = True


def iso_utc(moment: datetime) -> str:
    """Render ``moment`` the way the *arr APIs expect (UTC, millisecond ``Z``)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class ArrClient(JsonHttpClient):
    """REST client for ``{base}/api/{version}`` authenticated with ``X-Api-Key``."""

    def __init__(self, base_url: str, api_key: str, api_version: str = "v3", **kwargs: Any) -> None:
        super().__init__(base_url, {"X-Api-Key": api_key}, **kwargs)
        self.api_version = api_version

    def _path(self, path: str) -> str:
        return f"/api/{self.api_version}{path}"

    async def get_system_status(self) -> dict[str, Any]:
        return await self.get_json(self._path("/system/status"))

    async def get_health(self) -> list[dict[str, Any]]:
        return await self.get_json(self._path("/health")) or []

    async def get_history(
        self,
        page: int = 1,
        page_size: int = 50,
        extra: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        params = {
            "page": page,
            "pageSize": page_size,
            "sortKey": "date",
            "sortDirection": "descending",
            **(extra or {}),
        }
        return await self.get_json(self._path("/history"), params) or {}

    async def get_history_since(
        self, since: datetime, extra: Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        params = {"date": iso_utc(since), **(extra or {})}
        return await self.get_json(self._path("/history/since"), params) or []

    async def get_queue(
        self,
        page: int = 1,
        page_size: int = 100,
        extra: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        params = {
            "page": page,
            "pageSize": page_size,
            "sortKey": "timeleft",
            "sortDirection": "ascending",
            **(extra or {}),
        }
        return await self.get_json(self._path("/queue"), params) or {}


def normalize_history_record(record: Mapping[str, Any], flavor: ArrFlavor) -> NormalizedActivity:
    event = resolve_event_name(record.get("eventType"), flavor.event_names, flavor.event_aliases)
    activity_type = flavor.classify(event)
    title, overview = flavor.describe(record, event, activity_type)
    metadata = {k: v for k, v in flavor.metadata(record).items() if v is not None}
    return NormalizedActivity(
        id=f"{flavor.id}-history-{record.get('id')}",
        type=event,
        name=title,
        overview=overview,
        severity=flavor.severity(activity_type, record),
        timestamp=parse_api_datetime(record.get("date")) or datetime.now(timezone.utc),
        item_id=flavor.item_id(record),
        metadata=metadata or None,
    )


def _records(page: Any) -> list[dict[str, Any]]:
    # /history returns a paging envelope, /history/since a bare list
    if isinstance(page, dict):
        return page.get("records") or []
    return list(page or [])


class ArrProvider(BaseProvider):
    """Provider for Sonarr, Radarr, Prowlarr and friends, driven by an ``ArrFlavor``."""

    def __init__(
        self,
        flavor: ArrFlavor,
        *,
        client_factory: Callable[..., ArrClient] = ArrClient,
    ) -> None:
        super().__init__(ArrLogParser(), ARR_CORRELATION_PATTERNS, flavor.log_file_config)
        self.flavor = flavor
        self.id = flavor.id
        self.name = flavor.name
        self.capabilities = ARR_CAPABILITIES
        self._client_factory = client_factory

    async def connect(self, config: ProviderConfig) -> None:
        if self._client is not None:
            await self.disconnect()
        client = self._client_factory(config.url, config.api_key, api_version=self.flavor.api_version)
        try:
            await client.get_system_status()
        except Exception:
            await client.close()
            raise
        self._config = config
        self._client = client
        logger.info("Connected to %s at %s", self.name, config.url)

    async def get_server_info(self) -> ServerInfo:
        status = await self._require_client().get_system_status()
        app = str(status.get("appName") or self.name)
        return ServerInfo(
            name=status.get("instanceName") or app,
            version=str(status.get("version", "")),
            id=f"{app}-{status.get('branch', '')}",
        )

    async def get_sessions(self) -> list[NormalizedSession]:
        self._require_client()
        return []

    async def get_users(self) -> list[NormalizedUser]:
        self._require_client()
        return []

    async def get_activity(
        self,
        since: datetime | None = None,
        *,
        history_page_size: int | None = None,
        queue_page_size: int | None = None,
    ) -> list[NormalizedActivity]:
        """Health, history and queue activity, each category fault-isolated."""
        client: ArrClient = self._require_client()
        flavor = self.flavor
        history_size = history_page_size or settings.history_page_size
        queue_size = queue_page_size or settings.queue_page_size

        async def fetch_health(_since: datetime | None) -> Any:
            return await client.get_health()

        async def fetch_history(watermark: datetime | None) -> Any:
            if watermark is not None:
                return await client.get_history_since(watermark, flavor.history_params)
            return await client.get_history(page_size=history_size, extra=flavor.history_params)

        async def fetch_queue(_since: datetime | None) -> Any:
            return await client.get_queue(page_size=queue_size, extra=flavor.queue_params)

        sources: list[PollSource] = []
        if flavor.has_health:
            sources.append(PollSource("health", fetch_health, normalize_health))
        sources.append(
            PollSource(
                "history",
                fetch_history,
                lambda page: [normalize_history_record(r, flavor) for r in _records(page)],
            )
        )
        if flavor.has_queue:
            sources.append(PollSource("queue", fetch_queue, lambda page: normalize_queue(_records(page))))

        aggregator = PollAggregator(sources, label=self.id)
        activities = await aggregator.collect(since)
        self.failed_sources = aggregator.failed
        return activities

    def activity_watermark(self, activities: Sequence[NormalizedActivity]) -> datetime | None:
        """Newest history timestamp, or ``None`` when history could not be fetched.

        Health and queue items are stamped with the poll time, so only history
        records say how far the server has actually been read.
        """
        if "history" in self.failed_sources:
            return None
        prefix = f"{self.id}-history-"
        return super().activity_watermark([a for a in activities if a.id.startswith(prefix)])
