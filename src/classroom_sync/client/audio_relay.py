"""
Live audio relay.

Publisher: while the microphone is on and the channel is open, every finished
capture segment is sent at once as an `audio_chunk` envelope (no batching).
Turning the microphone off or losing the channel halts capture synchronously.

Subscriber: every chunk is decoded and played immediately at the local volume
unless muted. Lost or reordered chunks are tolerated, never corrected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Optional

import numpy as np

from classroom_sync.protocol import T_AUDIO_CHUNK, AudioChunkMessage, Envelope

from .audio import AudioSink, AudioSource, decode_segment, encode_segment, input_level
from .connection import ConnectionManager
from .roles import Role

logger = logging.getLogger(__name__)


class AudioRelay:
    def __init__(
        self,
        connection: ConnectionManager,
        role: Role,
        *,
        source: AudioSource | None = None,
        sink: AudioSink | None = None,
        volume: int = 80,
        muted: bool = False,
        on_level: Optional[Callable[[float], None]] = None,
        on_device_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self.connection = connection
        self.role = role
        self.source = source
        self.sink = sink
        self.muted = muted
        self.on_level = on_level
        self.on_device_error = on_device_error
        self._volume = 0
        self.volume = volume

        self.input_level = 0.0
        self.chunks_sent = 0
        self._attached = True
        self._mic_active = False
        self._capture_task: asyncio.Task | None = None

    @property
    def volume(self) -> int:
        return self._volume

    @volume.setter
    def volume(self, value: int) -> None:
        self._volume = max(0, min(100, int(value)))

    @property
    def mic_active(self) -> bool:
        return self._mic_active

    # ------------------------------------------------------------------
    # Publisher side
    # ------------------------------------------------------------------

    def start_microphone(self) -> bool:
        """Open the capture source and start streaming segments."""
        if not self._attached or self.role is not Role.PUBLISHER:
            return False
        if self._mic_active:
            return True
        if self.source is None:
            self._device_failure(RuntimeError("no audio input source configured"))
            return False
        if not self.connection.is_open:
            logger.info("audio channel not open; microphone stays off")
            return False

        try:
            self.source.start()
        except Exception as e:
            self._device_failure(e)
            return False

        self._mic_active = True
        self._capture_task = asyncio.get_running_loop().create_task(self._capture_loop())
        logger.info("microphone on")
        return True

    def stop_microphone(self) -> None:
        if self._mic_active:
            logger.info("microphone off")
        self._halt()

    def toggle_microphone(self) -> bool:
        if self._mic_active:
            self.stop_microphone()
            return False
        return self.start_microphone()

    def connection_lost(self) -> None:
        """Channel left `open`: capture must not outlive it."""
        if self._mic_active:
            logger.info("audio channel lost; stopping capture")
        self._halt()

    async def _capture_loop(self) -> None:
        source = self.source
        assert source is not None
        try:
            while self._mic_active and self.connection.is_open:
                segment = await source.read_segment()
                if not self._mic_active:
                    break
                self._update_level(segment)
                sent = await self.connection.send(
                    T_AUDIO_CHUNK, encode_segment(segment, source.sample_rate)
                )
                if sent:
                    self.chunks_sent += 1
        except EOFError as e:
            logger.info("audio input ended: %s", e)
        except Exception as e:
            # Device backends raise their own Exception subclasses.
            self._device_failure(e)
            return
        self._halt()

    def _update_level(self, segment: np.ndarray) -> None:
        self.input_level = input_level(segment)
        self._report_level(self.input_level)

    def _report_level(self, level: float) -> None:
        if self.on_level is None:
            return
        try:
            self.on_level(level)
        except Exception:
            logger.exception("on_level callback raised")

    def _halt(self) -> None:
        self._mic_active = False
        task = self._capture_task
        self._capture_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self.source is not None:
            try:
                self.source.stop()
            except Exception:
                logger.exception("audio source failed to stop")
        if self.input_level:
            self.input_level = 0.0
            self._report_level(0.0)

    def _device_failure(self, exc: BaseException) -> None:
        logger.error("audio capture failed: %s", exc)
        self._halt()
        if self.on_device_error is None:
            return
        try:
            self.on_device_error(exc)
        except Exception:
            logger.exception("on_device_error callback raised")

    # ------------------------------------------------------------------
    # Subscriber side
    # ------------------------------------------------------------------

    def handle_envelope(self, envelope: Envelope) -> None:
        if not self._attached or not isinstance(envelope, AudioChunkMessage):
            return
        if self.role is Role.PUBLISHER or self.muted:
            return
        if self.sink is None:
            logger.debug("audio chunk received but no output sink configured")
            return
        try:
            pcm, sample_rate = decode_segment(envelope.payload)
        except (ValueError, RuntimeError) as e:
            logger.warning("dropping undecodable audio chunk: %s", e)
            return
        self.sink.play(pcm * (self._volume / 100.0), sample_rate)

    def detach(self) -> None:
        """Release the capture device and ignore further chunks."""
        self._halt()
        self._attached = False
