"""Prowlarr (indexer manager) flavor of the *arr adapter.

Prowlarr speaks API v1, has no download queue, and reports indexer events
rather than media events.
"""
from __future__ import annotations

from typing import Any, Mapping

from ..models import LogLevel
from ..parsers.arr import PROWLARR_LOG_FILE_CONFIG
from .arr import ArrFlavor, ArrProvider

PROWLARR_EVENT_NAMES: dict[int, str] = {
    1: "Query",
    2: "Grabbed",
    3: "RSS Sync",
    4: "Auth",
}

PROWLARR_EVENT_ALIASES: dict[str, str] = {
    "indexerQuery": "Query",
    "releaseGrabbed": "Grabbed",
    "indexerRss": "RSS Sync",
    "indexerAuth": "Auth",
}

_ACTIVITY_TYPES: dict[str, str] = {
    "Query": "search",
    "Grabbed": "grab",
    "RSS Sync": "rss_sync",
    "Auth": "auth",
}


def classify(event: str) -> str:
    return _ACTIVITY_TYPES.get(event, "unknown")


def severity(activity_type: str, record: Mapping[str, Any]) -> LogLevel:
    if record.get("successful") is False:
        return LogLevel.ERROR
    if activity_type == "auth":
        return LogLevel.WARN
    return LogLevel.INFO


def describe(record: Mapping[str, Any], event: str, activity_type: str) -> tuple[str, str]:
    indexer = (record.get("indexer") or {}).get("name") or f"Indexer #{record.get('indexerId')}"
    failed = record.get("successful") is False
    if event == "Query":
        return f"Search: {record.get('query') or 'Unknown Query'}", f"Searched {indexer}{' (failed)' if failed else ''}"
    if event == "Grabbed":
        return f"Grabbed: {record.get('sourceTitle') or ''}", f"Release grabbed from {indexer}"
    if event == "RSS Sync":
        return f"RSS Sync: {indexer}", f"RSS feed synced{' (failed)' if failed else ''}"
    if event == "Auth":
        return f"Auth: {indexer}", "Authentication failed" if failed else "Authentication successful"
    return f"{event}: {indexer}", record.get("sourceTitle") or ""


def item_id(record: Mapping[str, Any]) -> str | None:
    value = record.get("indexerId")
    return str(value) if value is not None else None


def metadata(record: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "indexerId": record.get("indexerId"),
        "indexerName": (record.get("indexer") or {}).get("name"),
        "query": record.get("query"),
        "successful": record.get("successful"),
        "elapsedTime": record.get("elapsedTime"),
        "categories": record.get("categories"),
    }


PROWLARR_FLAVOR = ArrFlavor(
    id="prowlarr",
    name="Prowlarr",
    log_file_config=PROWLARR_LOG_FILE_CONFIG,
    event_names=PROWLARR_EVENT_NAMES,
    event_aliases=PROWLARR_EVENT_ALIASES,
    describe=describe,
    item_id=item_id,
    metadata=metadata,
    classify=classify,
    severity=severity,
    api_version="v1",
    has_queue=False,
)


def create_provider() -> ArrProvider:
    return ArrProvider(PROWLARR_FLAVOR)
