"""Timer abstraction for the push client.

Heartbeat and reconnect timers go through a ``Scheduler`` so tests can swap in
a manual clock and step time deterministically.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Protocol, runtime_checkable


@runtime_checkable
class Handle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Schedules a plain callback after ``delay`` seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle: ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle:
        return asyncio.get_running_loop().call_later(delay, callback)
