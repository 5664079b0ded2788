"""Self-healing websocket client for server push channels.

Lifecycle::

    IDLE -> CONNECTING -> CONNECTED -> DISCONNECTED -> RECONNECT_SCHEDULED -> CONNECTING ...
                                                   \\-> CLOSED (explicit disconnect)

Invariants:
  * at most one heartbeat timer and one reconnect timer exist at a time;
  * a lost connection schedules exactly one reconnect, however many
    close/error signals arrive for it;
  * ``connect()`` never overlaps itself and never raises;
  * ``disconnect()`` cancels both timers before closing the socket, and a
    closed client stays closed until ``connect()`` is called again.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

import websockets

from ..config import settings
from .messages import ForceKeepAlive, KeepAliveAck, PushMessage, decode_frame, encode_frame
from .scheduler import AsyncioScheduler, Handle, Scheduler

logger = logging.getLogger(__name__)

MessageHandler = Callable[[PushMessage], Any]
Connector = Callable[[str], Awaitable[Any]]


class PushState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"
    CLOSED = "closed"


def _redact(url: str) -> str:
    return url.split("?", 1)[0]


class PushClient:
    """Persistent push connection with heartbeat and automatic reconnect.

    Args:
        url:                 Full ``ws://`` / ``wss://`` URL, credentials included.
        handler:             Called with every decoded message except
                             keep-alive traffic. May be a coroutine function.
        subscribe_frames:    Encoded frames sent after every (re)connect.
        scheduler:           Timer source; defaults to the running event loop.
        connector:           Coroutine opening the socket; ``websockets.connect``.
        heartbeat_interval:  Seconds between ``KeepAlive`` frames.
        reconnect_delay:     Seconds between a lost connection and the retry.
    """

    def __init__(
        self,
        url: str,
        handler: MessageHandler,
        *,
        subscribe_frames: Iterable[str] = (),
        scheduler: Scheduler | None = None,
        connector: Connector | None = None,
        heartbeat_interval: float | None = None,
        reconnect_delay: float | None = None,
    ) -> None:
        self._url = url
        self._handler = handler
        self._subscribe_frames = tuple(subscribe_frames)
        self._scheduler = scheduler or AsyncioScheduler()
        self._connector = connector or websockets.connect
        self._heartbeat_interval = (
            settings.heartbeat_interval if heartbeat_interval is None else heartbeat_interval
        )
        self._reconnect_delay = settings.reconnect_delay if reconnect_delay is None else reconnect_delay

        self._state = PushState.IDLE
        self._ws: Any = None
        self._connecting = False
        self._should_reconnect = False
        self._heartbeat: Handle | None = None
        self._reconnect: Handle | None = None
        self._reader: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> PushState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._state is PushState.CONNECTED

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket; on failure schedule a reconnect instead of raising."""
        if self._ws is not None or self._connecting:
            return
        self._connecting = True
        self._should_reconnect = True
        self._state = PushState.CONNECTING
        try:
            ws = await self._connector(self._url)
        except Exception as exc:
            logger.warning("Push connect to %s failed: %s", _redact(self._url), exc)
            self._connecting = False
            self._on_connection_lost()
            return
        finally:
            self._connecting = False

        if self._state is PushState.CLOSED:
            # disconnect() ran while we were awaiting the handshake
            await self._close_socket(ws)
            return

        self._ws = ws
        self._state = PushState.CONNECTED
        logger.info("Push channel connected: %s", _redact(self._url))
        self._start_heartbeat()
        for frame in self._subscribe_frames:
            await self._send(frame)
        self._reader = asyncio.create_task(self._read_loop(ws))

    async def disconnect(self) -> None:
        """Close for good. Safe to call repeatedly or before connect()."""
        self._should_reconnect = False
        self._state = PushState.CLOSED
        self._cancel_heartbeat()
        self._cancel_reconnect()

        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        pending = [t for t in (*self._tasks, reader) if t is not None and not t.done()]
        self._tasks.clear()
        current = asyncio.current_task()
        for task in pending:
            if task is not current:
                task.cancel()

        if ws is not None:
            await self._close_socket(ws)
        others = [t for t in pending if t is not current]
        if others:
            await asyncio.gather(*others, return_exceptions=True)
        self._connecting = False

    def _on_connection_lost(self) -> None:
        self._cancel_heartbeat()
        self._ws = None
        if self._state is PushState.CLOSED:
            return
        self._state = PushState.DISCONNECTED
        if not self._should_reconnect or self._reconnect is not None:
            return
        self._state = PushState.RECONNECT_SCHEDULED
        logger.info("Push channel lost; reconnecting in %.0fs", self._reconnect_delay)
        self._reconnect = self._scheduler.call_later(self._reconnect_delay, self._on_reconnect_due)

    def _on_reconnect_due(self) -> None:
        self._reconnect = None
        if self._should_reconnect:
            self._spawn(self.connect())

    def _cancel_reconnect(self) -> None:
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._cancel_heartbeat()
        self._heartbeat = self._scheduler.call_later(self._heartbeat_interval, self._on_heartbeat)

    def _on_heartbeat(self) -> None:
        self._heartbeat = None
        if self._ws is None:
            return
        self._spawn(self._send(encode_frame("KeepAlive")))
        self._heartbeat = self._scheduler.call_later(self._heartbeat_interval, self._on_heartbeat)

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except websockets.ConnectionClosed as exc:
            logger.info("Push channel closed: %s", exc)
        except OSError as exc:
            logger.warning("Push channel error: %s", exc)
        finally:
            # a socket replaced or dropped by disconnect() must not trigger a reconnect
            if self._ws is ws:
                self._on_connection_lost()

    async def _dispatch(self, raw: str | bytes) -> None:
        message = decode_frame(raw)
        if message is None:
            return
        if isinstance(message, ForceKeepAlive):
            await self._send(encode_frame("KeepAlive"))
            return
        if isinstance(message, KeepAliveAck):
            return
        try:
            result = self._handler(message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Push handler failed for %s", type(message).__name__)

    async def _send(self, frame: str) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.send(frame)
        except (websockets.ConnectionClosed, OSError) as exc:
            logger.warning("Push send failed: %s", exc)

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except (websockets.WebSocketException, OSError) as exc:
            logger.debug("Ignoring error while closing push socket: %s", exc)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
