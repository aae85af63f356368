"""
Channel connection manager.

One `ConnectionManager` owns exactly one transport connection to the relay for
one channel (a room plus a concern). It connects, decodes inbound frames into
envelopes, and reconnects with a bounded number of attempts after a transient
failure. Everything runs on the asyncio loop thread; the only suspension points
are connect, the reconnect delay and the callbacks themselves.

State machine:

    connecting -> open -> closed -> reconnecting -> open ...
                                 \\-> exhausted   (terminal, needs a new open())

An explicit `close()` from any state moves to `closed` and suppresses any
further reconnection.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed

from classroom_sync.protocol import Envelope, decode, encode

from .config import Settings, get_settings

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"
    EXHAUSTED = "exhausted"


class Transport(Protocol):
    """The subset of a websockets client connection the manager relies on."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[Transport]]


def websocket_connector(settings: Settings | None = None) -> Connector:
    settings = settings or get_settings()

    async def _connect(address: str) -> Transport:
        return await websockets.connect(
            address,
            ping_interval=settings.ws_ping_interval_s,
            ping_timeout=settings.ws_ping_timeout_s,
            max_size=settings.ws_max_size,
        )

    return _connect


def channel_address(base_url: str, room_id: str, concern: str) -> str:
    """Qualify a relay URL with `room=<room_id>-<concern>`."""
    parts = urlsplit(base_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("room", f"{room_id}-{concern}"))
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass
class ChannelOptions:
    """
    Callback set and reconnect policy for one `open()`.

    Callbacks may be plain functions or coroutine functions; coroutines are
    awaited on the reader task so `on_message` calls never interleave.
    """

    on_open: Optional[Callable[[], Any]] = None
    on_message: Optional[Callable[[Envelope], Any]] = None
    on_close: Optional[Callable[[], Any]] = None
    on_error: Optional[Callable[[BaseException], Any]] = None
    on_state_change: Optional[Callable[[ConnectionState], Any]] = None
    on_exhausted: Optional[Callable[[], Any]] = None

    auto_reconnect: bool = True
    reconnect_interval_ms: int = 5000
    max_reconnect_attempts: int = 5


class ConnectionManager:
    def __init__(
        self,
        connector: Connector | None = None,
        *,
        name: str = "channel",
        history_size: int = 256,
        settings: Settings | None = None,
    ) -> None:
        self.name = name
        self._settings = settings or get_settings()
        self._connector = connector
        self._options = ChannelOptions()
        self._address: str | None = None

        self._state = ConnectionState.CLOSED
        self._transport: Transport | None = None
        self._run_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_attempts = 0
        self._closed_by_caller = False

        # Bumped on every (re)connect and on teardown; work tagged with an older
        # generation is stale and must not touch state or deliver events.
        self._generation = 0
        self._background: set[asyncio.Task] = set()

        # Inbound envelopes of the active session only (never persisted).
        self.history: deque[Envelope] = deque(maxlen=history_size)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def address(self) -> str | None:
        return self._address

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def is_reconnecting(self) -> bool:
        return self._state is ConnectionState.RECONNECTING

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def max_reconnect_attempts(self) -> int:
        return self._options.max_reconnect_attempts

    @property
    def reconnect_interval_ms(self) -> int:
        return self._options.reconnect_interval_ms

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def open(self, address: str, options: ChannelOptions | None = None) -> None:
        """Begin connecting; returns immediately (must run inside the event loop)."""
        old = self._teardown()
        if old is not None:
            self._spawn(self._release(old))

        self._address = address
        self._options = options or ChannelOptions()
        self._closed_by_caller = False
        self._reconnect_attempts = 0
        self.history.clear()
        self._set_state(ConnectionState.CONNECTING)
        logger.info("[%s] connecting to %s", self.name, address)
        self._start_connect()

    async def send(self, type_: str, payload: Any) -> bool:
        """Transmit one envelope if open. Never raises, never queues."""
        transport = self._transport
        if self._state is not ConnectionState.OPEN or transport is None:
            logger.debug("[%s] not connected; dropped %s", self.name, type_)
            return False
        try:
            frame = encode(type_, payload)
        except (TypeError, ValueError) as e:
            logger.error("[%s] cannot encode %s payload: %s", self.name, type_, e)
            return False
        try:
            await transport.send(frame)
        except (ConnectionClosed, OSError) as e:
            # The reader sees the same closure and drives reconnection.
            logger.warning("[%s] send %s failed: %s", self.name, type_, e)
            return False
        if self._settings.debug_log_msgs:
            logger.debug("[%s] out type=%s", self.name, type_)
        return True

    async def close(self) -> None:
        """Terminal close from the caller's view; cancels any pending reconnect."""
        self._closed_by_caller = True
        transport = self._teardown()
        self._reconnect_attempts = 0
        self.history.clear()
        self._set_state(ConnectionState.CLOSED)
        if transport is not None:
            await self._release(transport)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("[%s] closed", self.name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_connector(self) -> Connector:
        if self._connector is None:
            self._connector = websocket_connector(self._settings)
        return self._connector

    def _start_connect(self) -> None:
        self._generation += 1
        gen = self._generation
        self._run_task = asyncio.get_running_loop().create_task(self._run(gen))

    async def _run(self, gen: int) -> None:
        assert self._address is not None
        try:
            transport = await self._get_connector()(self._address)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if gen != self._generation:
                return
            logger.warning("[%s] connect to %s failed: %s", self.name, self._address, e)
            await self._emit(self._options.on_error, e)
            if gen == self._generation:
                await self._connection_lost(gen)
            return

        if gen != self._generation:
            # Superseded by a newer open() or a close() while connecting.
            await self._release(transport)
            return

        self._transport = transport
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.OPEN)
        logger.info("[%s] connected", self.name)
        await self._emit(self._options.on_open)
        if gen != self._generation:
            return

        await self._read(gen, transport)

    async def _read(self, gen: int, transport: Transport) -> None:
        error: BaseException | None = None
        try:
            async for frame in transport:
                if gen != self._generation:
                    return
                envelope = decode(frame)
                self.history.append(envelope)
                if self._settings.debug_log_msgs:
                    logger.debug("[%s] in type=%s", self.name, envelope.type)
                await self._emit(self._options.on_message, envelope)
                if gen != self._generation:
                    return
        except (ConnectionClosed, OSError) as e:
            error = e

        if gen != self._generation:
            return
        self._transport = None
        if error is not None:
            logger.warning("[%s] connection dropped: %s", self.name, error)
            await self._emit(self._options.on_error, error)
            if gen != self._generation:
                return
        await self._connection_lost(gen)

    async def _connection_lost(self, gen: int) -> None:
        opts = self._options
        self._set_state(ConnectionState.CLOSED)
        await self._emit(opts.on_close)
        if self._closed_by_caller or gen != self._generation:
            return

        if not opts.auto_reconnect:
            logger.info("[%s] connection closed; auto-reconnect disabled", self.name)
            return

        if self._reconnect_attempts < opts.max_reconnect_attempts:
            self._set_state(ConnectionState.RECONNECTING)
            delay_s = opts.reconnect_interval_ms / 1000.0
            logger.info(
                "[%s] reconnecting in %.2fs (attempt %d/%d)",
                self.name,
                delay_s,
                self._reconnect_attempts + 1,
                opts.max_reconnect_attempts,
            )
            loop = asyncio.get_running_loop()
            self._reconnect_handle = loop.call_later(delay_s, self._fire_reconnect)
            return

        self._set_state(ConnectionState.EXHAUSTED)
        logger.error(
            "[%s] giving up after %d reconnect attempts", self.name, self._reconnect_attempts
        )
        await self._emit(opts.on_exhausted)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closed_by_caller:
            return
        self._reconnect_attempts += 1
        self._start_connect()

    def _teardown(self) -> Transport | None:
        """Cancel timer and tasks, detach the transport (caller releases it)."""
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        self._generation += 1
        task = self._run_task
        self._run_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        transport = self._transport
        self._transport = None
        return transport

    async def _release(self, transport: Transport) -> None:
        try:
            await transport.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug("[%s] error while closing transport: %s", self.name, e)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        cb = self._options.on_state_change
        if cb is None:
            return
        try:
            result = cb(state)
        except Exception:
            logger.exception("[%s] on_state_change callback failed", self.name)
            return
        if inspect.isawaitable(result):
            self._spawn(result)

    async def _emit(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            name = getattr(callback, "__name__", repr(callback))
            logger.exception("[%s] callback %s failed", self.name, name)
