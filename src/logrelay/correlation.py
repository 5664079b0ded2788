"""Correlation-id extraction from free-text log messages.

Extraction is declarative: a provider exposes an ordered tuple of
``CorrelationPattern`` and this module applies them. When two patterns target
the same field the earlier one wins.
"""
from __future__ import annotations

import dataclasses
from typing import Iterable

from .models import CorrelationPattern, ParsedLogEntry

# Names that map onto first-class ParsedLogEntry fields; anything else lands
# in ``metadata``.
ENTRY_FIELDS: frozenset[str] = frozenset(
    {"session_id", "user_id", "device_id", "item_id", "play_session_id"}
)


def extract_correlations(message: str, patterns: Iterable[CorrelationPattern]) -> dict[str, str]:
    """Return ``{name: captured}`` for every pattern that matches ``message``."""
    found: dict[str, str] = {}
    for pattern in patterns:
        if pattern.name in found:
            continue
        m = pattern.pattern.search(message)
        if m and m.group(1):
            found[pattern.name] = m.group(1)
    return found


def enrich(entry: ParsedLogEntry, patterns: Iterable[CorrelationPattern]) -> ParsedLogEntry:
    """Copy of ``entry`` with correlation ids pulled from its message.

    Fields the parser already populated are left untouched.
    """
    found = extract_correlations(entry.message, patterns)
    if not found:
        return entry
    changes: dict[str, object] = {}
    metadata = dict(entry.metadata or {})
    for name, value in found.items():
        if name in ENTRY_FIELDS:
            if getattr(entry, name) is None:
                changes[name] = value
        else:
            metadata.setdefault(name, value)
    if metadata:
        changes["metadata"] = metadata
    return dataclasses.replace(entry, **changes)
