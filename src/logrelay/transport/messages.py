"""Wire codec for the session-server push channel.

Frames are JSON objects ``{"MessageType": str, "Data": any}``. Decoding yields
one of the typed messages below; anything malformed or unrecognised decodes
to ``None`` and is dropped by the caller.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES: frozenset[str] = frozenset(
    {
        "SessionEnded",
        "LibraryChanged",
        "ServerRestarting",
        "ServerShuttingDown",
        "RefreshProgress",
        "ScheduledTaskEnded",
        "UserDataChanged",
        "GeneralCommand",
    }
)


@dataclass(frozen=True)
class ForceKeepAlive:
    """Server asks the client to send a keep-alive right away."""


@dataclass(frozen=True)
class KeepAliveAck:
    """Server acknowledged one of our keep-alives."""


@dataclass(frozen=True)
class SessionsSnapshot:
    sessions: list[dict[str, Any]]


@dataclass(frozen=True)
class PlaybackStarted:
    data: dict[str, Any]


@dataclass(frozen=True)
class PlaybackStopped:
    data: dict[str, Any]


@dataclass(frozen=True)
class PlaybackProgress:
    data: dict[str, Any]


@dataclass(frozen=True)
class Notification:
    category: str
    data: Any = None


PushMessage = Union[
    ForceKeepAlive,
    KeepAliveAck,
    SessionsSnapshot,
    PlaybackStarted,
    PlaybackStopped,
    PlaybackProgress,
    Notification,
]

_PLAYBACK = {
    "PlaybackStart": PlaybackStarted,
    "PlaybackStopped": PlaybackStopped,
    "PlaybackProgress": PlaybackProgress,
}


def decode_frame(raw: str | bytes) -> PushMessage | None:
    """Decode one text frame, or None if it carries nothing we understand."""
    try:
        frame = json.loads(raw)
    except (ValueError, TypeError):
        logger.debug("Dropping non-JSON push frame")
        return None
    if not isinstance(frame, dict):
        return None

    kind = frame.get("MessageType")
    data = frame.get("Data")

    if kind == "ForceKeepAlive":
        return ForceKeepAlive()
    if kind == "KeepAlive":
        return KeepAliveAck()
    if kind == "Sessions":
        return SessionsSnapshot(sessions=data if isinstance(data, list) else [])
    if kind in _PLAYBACK:
        if not isinstance(data, dict):
            return None
        return _PLAYBACK[kind](data=data)
    if kind in NOTIFICATION_TYPES:
        return Notification(category=kind, data=data)

    logger.debug("Ignoring push message type %r", kind)
    return None


def encode_frame(message_type: str, data: Any = None) -> str:
    frame: dict[str, Any] = {"MessageType": message_type}
    if data is not None:
        frame["Data"] = data
    return json.dumps(frame)
