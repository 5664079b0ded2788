"""Event-code resolution and activity classification for polled history.

Upstream history records carry their event type either as an integer code,
a numeric string, or a symbolic name depending on API version. All three
forms resolve through one table so ``4``, ``"4"`` and ``"downloadFailed"``
end up identical.
"""
from __future__ import annotations

from typing import Any, Mapping

from ..models import LogLevel

UNKNOWN_EVENT = "unknown"

_ACTIVITY_TYPES: dict[str, str] = {
    "grabbed": "grab",
    "downloadFolderImported": "import_complete",
    "seriesFolderImported": "import_complete",
    "movieFolderImported": "import_complete",
    "downloadFailed": "download_failed",
    "importFailed": "import_failed",
    "deleted": "deleted",
    "episodeFileDeleted": "deleted",
    "movieFileDeleted": "deleted",
    "renamed": "renamed",
    "episodeFileRenamed": "renamed",
    "movieFileRenamed": "renamed",
}

_SEVERITIES: dict[str, LogLevel] = {
    "download_failed": LogLevel.ERROR,
    "import_failed": LogLevel.ERROR,
    "health_error": LogLevel.ERROR,
    "health_warning": LogLevel.WARN,
    "queue_warning": LogLevel.WARN,
}


def resolve_event_name(
    value: Any,
    names: Mapping[int, str],
    aliases: Mapping[str, str] | None = None,
) -> str:
    """Resolve an event code in any accepted form to its canonical name.

    ``names`` maps integer codes to names; ``aliases`` maps alternate
    symbolic spellings (e.g. ``"indexerQuery"``) to canonical names.
    Anything unresolvable becomes ``"unknown"``.
    """
    if isinstance(value, bool):
        return UNKNOWN_EVENT
    if isinstance(value, int):
        return names.get(value, UNKNOWN_EVENT)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return names.get(int(text), UNKNOWN_EVENT)
        if text in names.values():
            return text
        if aliases and text in aliases:
            return aliases[text]
    return UNKNOWN_EVENT


def activity_type_for(event_name: str) -> str:
    """Classify a history event; unrecognised events count as grabs."""
    return _ACTIVITY_TYPES.get(event_name, "grab")


def severity_for(activity_type: str) -> LogLevel:
    return _SEVERITIES.get(activity_type, LogLevel.INFO)
