"""
Pytest configuration and fixtures.

The relay is an opaque external service, so tests run against in-memory
transports: `FakeConnector` hands out isolated transports, `RelayHub` fans
frames out to every other transport connected to the same address.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import numpy as np
import pytest

from classroom_sync.client.config import Settings

_EOF = object()
_DROP = object()


class FakeTransport:
    def __init__(self, address: str = "") -> None:
        self.address = address
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionResetError("transport is closed")
        self.sent.append(message)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_EOF)

    def feed(self, frame: str | bytes) -> None:
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Simulate an abnormal network drop."""
        self._inbox.put_nowait(_DROP)

    def __aiter__(self) -> "FakeTransport":
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._inbox.get()
        if item is _EOF:
            raise StopAsyncIteration
        if item is _DROP:
            self.closed = True
            raise ConnectionResetError("connection dropped")
        return item


class FakeConnector:
    def __init__(self) -> None:
        self.attempts: list[str] = []
        self.transports: list[FakeTransport] = []
        self.refuse = False

    async def __call__(self, address: str) -> FakeTransport:
        self.attempts.append(address)
        await asyncio.sleep(0)
        if self.refuse:
            raise ConnectionRefusedError(f"refused: {address}")
        transport = FakeTransport(address)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


class HubTransport(FakeTransport):
    def __init__(self, hub: "RelayHub", address: str) -> None:
        super().__init__(address)
        self.hub = hub

    async def send(self, message: str) -> None:
        await super().send(message)
        for peer in list(self.hub.rooms.get(self.address, [])):
            if peer is not self and not peer.closed:
                peer.feed(message)

    async def close(self) -> None:
        await super().close()
        peers = self.hub.rooms.get(self.address, [])
        if self in peers:
            peers.remove(self)


class RelayHub:
    """Broadcast-to-others relay, keyed by the full channel address."""

    def __init__(self) -> None:
        self.rooms: dict[str, list[HubTransport]] = {}

    async def connect(self, address: str) -> HubTransport:
        await asyncio.sleep(0)
        transport = HubTransport(self, address)
        self.rooms.setdefault(address, []).append(transport)
        return transport


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


# ══════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def hub() -> RelayHub:
    return RelayHub()


@pytest.fixture
def test_settings() -> Settings:
    """Fast reconnects, no .env lookups."""
    return Settings(
        _env_file=None,
        relay_url="ws://relay.test/ws",
        reconnect_interval_ms=20,
        max_reconnect_attempts=3,
        audio_segment_ms=100,
        output_volume=50,
    )


@pytest.fixture
def sine_segment() -> tuple[np.ndarray, int]:
    """100ms of a 440Hz sine at half scale, 16kHz mono."""
    sample_rate = 16000
    t = np.arange(int(sample_rate * 0.1)) / sample_rate
    return (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32), sample_rate
