"""Shared pytest fixtures for logrelay tests."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest


@pytest.fixture()
def tmp_log_file(tmp_path: Path):
    """Return a factory that creates temporary log files."""

    def _make(lines: list[str], name: str = "test.log") -> Path:
        p = tmp_path / name
        p.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return p

    return _make


@pytest.fixture()
def jellyfin_lines() -> list[str]:
    return [
        "[2024-01-15 10:30:45.123 -05:00] [INF] [12] Jellyfin.Api.Controllers: Request started",
        "[2024-01-15 10:30:46.000 -05:00] [ERR] [7] MediaBrowser.Controller.MediaEncoding: Transcode failed",
        "System.IO.IOException: Disk full",
        "   at MediaBrowser.Encoder.Run()",
        "   at MediaBrowser.Encoder.Start()",
        "[2024-01-15 10:30:47.500 -05:00] [WRN] [12] Emby.Server.Implementations.Session: Session ended",
    ]


@pytest.fixture()
def emby_lines() -> list[str]:
    return [
        "2024-01-15 10:30:45.123 Info HttpServer: HTTP Request completed",
        "2024-01-15 10:30:46.456 Error App: Error processing request",
        "\tSystem.NullReferenceException: Object reference not set",
        "\t   at Emby.Server.Foo.Bar()",
        "2024-01-15 10:30:47.789 Warn Simple message without source",
    ]


@pytest.fixture()
def sonarr_lines() -> list[str]:
    return [
        "2024-01-15 10:30:45.1|Info|RssSyncService|RSS Sync Completed. Reports found: 50",
        "2024-01-15 10:30:46.2|Error|DownloadClient|Failed to connect DownloadId=abc123",
        "NzbDrone.Core.Download.DownloadClientException: Unable to connect",
        "   at NzbDrone.Core.Download.Clients.Sabnzbd.Connect()",
        "2024-01-15 10:30:47.3|Warn|Indexer|Indexer=NZBgeek returned no results",
    ]


# ---------------------------------------------------------------------------
# Deterministic timers and sockets for the push client
# ---------------------------------------------------------------------------


class ManualHandle:
    def __init__(self, scheduler: "ManualScheduler", when: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Fake clock: callbacks run only when ``advance`` passes their deadline."""

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self, self.now + delay, callback)
        self._handles.append(handle)
        return handle

    def pending(self) -> list[ManualHandle]:
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due callbacks in deadline order. Returns how many fired."""
        target = self.now + seconds
        fired = 0
        while True:
            due = sorted((h for h in self.pending() if h.when <= target), key=lambda h: h.when)
            if not due:
                break
            handle = due[0]
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback()
            fired += 1
        self.now = target
        return fired


class FakeSocket:
    """In-memory stand-in for a websocket connection."""

    _CLOSED = object()

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, frame: str) -> None:
        if self.closed:
            raise OSError("socket closed")
        self.sent.append(frame)

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(self._CLOSED)

    def feed(self, frame: str) -> None:
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the server going away."""
        self._inbox.put_nowait(self._CLOSED)

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()
