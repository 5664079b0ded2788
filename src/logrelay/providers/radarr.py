"""Radarr (movies) flavor of the *arr adapter."""
from __future__ import annotations

from typing import Any, Mapping

from ..parsers.arr import RADARR_LOG_FILE_CONFIG
from .arr import ArrFlavor, ArrProvider

# 2, 5 and 7 are unused by Radarr
RADARR_EVENT_NAMES: dict[int, str] = {
    0: "unknown",
    1: "grabbed",
    3: "downloadFolderImported",
    4: "downloadFailed",
    6: "movieFileDeleted",
    8: "movieFileRenamed",
    9: "movieFolderImported",
    10: "ignored",
}


def describe(record: Mapping[str, Any], event: str, activity_type: str) -> tuple[str, str]:
    movie = record.get("movie") or {}
    year = f" ({movie['year']})" if movie.get("year") else ""
    subject = f"{movie.get('title') or 'Unknown Movie'}{year}"
    source = record.get("sourceTitle") or ""
    message = (record.get("data") or {}).get("message")

    if activity_type == "grab":
        return f"Grabbed: {subject}", f"Release grabbed: {source}"
    if activity_type == "import_complete":
        return f"Imported: {subject}", "Movie imported successfully"
    if activity_type == "download_failed":
        return f"Download Failed: {subject}", str(message) if message else f"Failed to download: {source}"
    if activity_type == "import_failed":
        return f"Import Failed: {subject}", str(message) if message else f"Failed to import: {source}"
    if activity_type == "deleted":
        return f"Deleted: {subject}", "Movie file was deleted"
    if activity_type == "renamed":
        return f"Renamed: {subject}", "Movie file was renamed"
    return f"{event}: {subject}", source


def item_id(record: Mapping[str, Any]) -> str | None:
    value = record.get("movieId")
    return str(value) if value is not None else None


def metadata(record: Mapping[str, Any]) -> dict[str, Any]:
    data = record.get("data") or {}
    movie = record.get("movie") or {}
    return {
        "movieId": record.get("movieId"),
        "quality": ((record.get("quality") or {}).get("quality") or {}).get("name"),
        "downloadId": record.get("downloadId"),
        "indexer": data.get("indexer"),
        "downloadClient": data.get("downloadClient"),
        "imdbId": movie.get("imdbId"),
        "tmdbId": movie.get("tmdbId"),
    }


RADARR_FLAVOR = ArrFlavor(
    id="radarr",
    name="Radarr",
    log_file_config=RADARR_LOG_FILE_CONFIG,
    event_names=RADARR_EVENT_NAMES,
    describe=describe,
    item_id=item_id,
    metadata=metadata,
    history_params={"includeMovie": True},
    queue_params={"includeMovie": True, "includeUnknownMovieItems": True},
)


def create_provider() -> ArrProvider:
    return ArrProvider(RADARR_FLAVOR)
