"""Sonarr (TV series) flavor of the *arr adapter."""
from __future__ import annotations

from typing import Any, Mapping

from ..parsers.arr import SONARR_LOG_FILE_CONFIG
from .arr import ArrFlavor, ArrProvider

SONARR_EVENT_NAMES: dict[int, str] = {
    0: "unknown",
    1: "grabbed",
    2: "seriesFolderImported",
    3: "downloadFolderImported",
    4: "downloadFailed",
    5: "episodeFileDeleted",
    6: "episodeFileRenamed",
    7: "importFailed",
}


def _episode_code(episode: Mapping[str, Any]) -> str:
    if not episode:
        return ""
    return f"S{int(episode.get('seasonNumber') or 0):02d}E{int(episode.get('episodeNumber') or 0):02d}"


def describe(record: Mapping[str, Any], event: str, activity_type: str) -> tuple[str, str]:
    series = (record.get("series") or {}).get("title") or "Unknown Series"
    episode = record.get("episode") or {}
    subject = f"{series} {_episode_code(episode)}".rstrip()
    episode_title = episode.get("title") or ""
    source = record.get("sourceTitle") or ""
    message = (record.get("data") or {}).get("message")

    if activity_type == "grab":
        return f"Grabbed: {subject}", f"Release grabbed: {source}"
    if activity_type == "import_complete":
        return f"Imported: {subject}", (
            f'"{episode_title}" imported successfully' if episode_title else "Episode imported successfully"
        )
    if activity_type == "download_failed":
        return f"Download Failed: {subject}", str(message) if message else f"Failed to download: {source}"
    if activity_type == "import_failed":
        return f"Import Failed: {subject}", str(message) if message else f"Failed to import: {source}"
    if activity_type == "deleted":
        return f"Deleted: {subject}", f'"{episode_title}" was deleted' if episode_title else "Episode file was deleted"
    if activity_type == "renamed":
        return f"Renamed: {subject}", f'"{episode_title}" was renamed' if episode_title else "Episode file was renamed"
    return f"{event}: {subject}", source


def item_id(record: Mapping[str, Any]) -> str | None:
    value = record.get("episodeId")
    return str(value) if value is not None else None


def metadata(record: Mapping[str, Any]) -> dict[str, Any]:
    data = record.get("data") or {}
    return {
        "seriesId": record.get("seriesId"),
        "episodeId": record.get("episodeId"),
        "quality": ((record.get("quality") or {}).get("quality") or {}).get("name"),
        "downloadId": record.get("downloadId"),
        "indexer": data.get("indexer"),
        "downloadClient": data.get("downloadClient"),
    }


SONARR_FLAVOR = ArrFlavor(
    id="sonarr",
    name="Sonarr",
    log_file_config=SONARR_LOG_FILE_CONFIG,
    event_names=SONARR_EVENT_NAMES,
    describe=describe,
    item_id=item_id,
    metadata=metadata,
    history_params={"includeSeries": True, "includeEpisode": True},
    queue_params={"includeSeries": True, "includeEpisode": True, "includeUnknownSeriesItems": True},
)


def create_provider() -> ArrProvider:
    return ArrProvider(SONARR_FLAVOR)
