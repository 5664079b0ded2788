"""Fault-isolated aggregation of polled REST sources.

A poll-based server exposes activity in several independent categories
(health, history, queue). Each category is a ``PollSource``; the aggregator
fetches all of them concurrently and concatenates their normalized output
in source order. A source that fails is logged and contributes nothing, so
one broken endpoint never hides the others.

Usage::

    aggregator = PollAggregator(
        [
            PollSource("health", fetch_health, normalize_health),
            PollSource("history", fetch_history, normalize_history),
        ],
        label="sonarr",
    )
    activities = await aggregator.collect(since=None)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Sequence

from ..models import LogLevel, NormalizedActivity

logger = logging.getLogger(__name__)

Fetch = Callable[["datetime | None"], Awaitable[Any]]
Normalize = Callable[[Any], list[NormalizedActivity]]


@dataclass(frozen=True)
class PollSource:
    name: str
    fetch: Fetch
    normalize: Normalize


class PollAggregator:
    """Run every source inside its own failure boundary and merge the results."""

    def __init__(self, sources: Sequence[PollSource], label: str = "poll") -> None:
        self._sources = tuple(sources)
        self._label = label
        self._failed: tuple[str, ...] = ()

    @property
    def sources(self) -> tuple[PollSource, ...]:
        return self._sources

    @property
    def failed(self) -> tuple[str, ...]:
        """Names of the sources that failed during the last ``collect``."""
        return self._failed

    async def collect(self, since: datetime | None = None) -> list[NormalizedActivity]:
        results = await asyncio.gather(*(self._guarded(s, since) for s in self._sources))
        merged: list[NormalizedActivity] = []
        failed: list[str] = []
        for source, chunk in zip(self._sources, results):
            if chunk is None:
                failed.append(source.name)
                continue
            merged.extend(chunk)
        self._failed = tuple(failed)
        return merged

    async def _guarded(self, source: PollSource, since: datetime | None) -> list[NormalizedActivity] | None:
        try:
            raw = await source.fetch(since)
            return source.normalize(raw)
        except Exception as exc:
            logger.warning("[%s] Failed to get %s: %s", self._label, source.name, exc)
            return None


# ----------------------------------------------------------------------
# Shared normalizers for the health and queue categories
# ----------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def normalize_health(
    checks: Iterable[dict[str, Any]],
    now: Callable[[], datetime] = _utcnow,
) -> list[NormalizedActivity]:
    """Health checks of type ``warning`` or ``error`` become activities."""
    out: list[NormalizedActivity] = []
    for check in checks or ():
        kind = check.get("type")
        if kind not in ("warning", "error"):
            continue
        stamp = now()
        source = check.get("source", "unknown")
        out.append(
            NormalizedActivity(
                id=f"health-{source}-{_millis(stamp)}",
                type="health_error" if kind == "error" else "health_warning",
                name=f"Health {kind}: {source}",
                overview=check.get("message"),
                severity=LogLevel.ERROR if kind == "error" else LogLevel.WARN,
                timestamp=stamp,
            )
        )
    return out


def _queue_key(item: dict[str, Any], index: int) -> str:
    # downloadId is missing for items the download client has not picked up yet
    key = item.get("downloadId") or item.get("id")
    return str(key) if key is not None else f"item{index}"


def _queue_overview(item: dict[str, Any]) -> str:
    if item.get("errorMessage") is not None:
        return str(item["errorMessage"])
    parts = []
    for status in item.get("statusMessages") or ():
        parts.append(", ".join(status.get("messages") or ()))
    return "; ".join(parts)


def normalize_queue(
    items: Iterable[dict[str, Any]],
    now: Callable[[], datetime] = _utcnow,
) -> list[NormalizedActivity]:
    """Queue items flagged ``warning`` or carrying an error message become activities."""
    out: list[NormalizedActivity] = []
    for index, item in enumerate(items or ()):
        if item.get("trackedDownloadStatus") != "warning" and item.get("errorMessage") is None:
            continue
        stamp = now()
        out.append(
            NormalizedActivity(
                id=f"queue-{_queue_key(item, index)}-{_millis(stamp)}",
                type="queue_warning",
                name=f"Queue issue: {item.get('title', '')}",
                overview=_queue_overview(item),
                severity=LogLevel.WARN,
                timestamp=stamp,
            )
        )
    return out
