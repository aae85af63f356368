"""
Audio segment helpers for the audio channel.

Each segment travels as base64 text of a complete WAV file (PCM_16), so every
chunk decodes on its own and playback never depends on a previous chunk.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from pathlib import Path
from typing import Protocol

import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)


def encode_segment(pcm: np.ndarray, sample_rate: int) -> str:
    bio = io.BytesIO()
    sf.write(bio, pcm, sample_rate, format="WAV", subtype="PCM_16")
    return base64.b64encode(bio.getvalue()).decode("ascii")


def decode_segment(text: str) -> tuple[np.ndarray, int]:
    """
    Inverse of `encode_segment`.

    Raises ValueError for bad base64 and RuntimeError (LibsndfileError) for
    bytes that are not a readable audio file.
    """
    raw = base64.b64decode(text, validate=True)
    data, sample_rate = sf.read(io.BytesIO(raw), dtype="float32")
    return data, int(sample_rate)


def input_level(pcm: np.ndarray) -> float:
    """RMS of a float segment, clipped to [0, 1] (meter only, never transmitted)."""
    if pcm.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(pcm, dtype=np.float64))))
    return min(1.0, rms)


class AudioSource(Protocol):
    """Capture device; `read_segment` completes once per fixed-length segment."""

    sample_rate: int

    def start(self) -> None: ...

    async def read_segment(self) -> np.ndarray: ...

    def stop(self) -> None: ...


class AudioSink(Protocol):
    def play(self, pcm: np.ndarray, sample_rate: int) -> None: ...


class WaveFileSource:
    """
    Feed a sound file as if it were a live input.

    Segments are paced in real time by default; `loop=True` restarts at the end
    of the file, otherwise EOFError signals the end of input.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        segment_ms: int = 100,
        realtime: bool = True,
        loop: bool = False,
    ) -> None:
        self.path = Path(path)
        self.segment_ms = segment_ms
        self.realtime = realtime
        self.loop = loop
        self.sample_rate = 0
        self._file: sf.SoundFile | None = None

    def start(self) -> None:
        self._file = sf.SoundFile(str(self.path))
        self.sample_rate = self._file.samplerate

    async def read_segment(self) -> np.ndarray:
        await asyncio.sleep(self.segment_ms / 1000.0 if self.realtime else 0)
        f = self._file
        if f is None or f.closed:
            raise EOFError("audio source is stopped")
        frames = max(1, int(self.sample_rate * self.segment_ms / 1000))
        data = f.read(frames, dtype="float32")
        if len(data) == 0 and self.loop:
            f.seek(0)
            data = f.read(frames, dtype="float32")
        if len(data) == 0:
            raise EOFError(f"end of {self.path.name}")
        return data

    def stop(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class BufferSink:
    """Collects played clips in memory."""

    def __init__(self) -> None:
        self.clips: list[tuple[np.ndarray, int]] = []

    def play(self, pcm: np.ndarray, sample_rate: int) -> None:
        self.clips.append((pcm, sample_rate))


class WaveFileSink:
    """Appends every played clip to one WAV file."""

    def __init__(self, path: str | Path, *, sample_rate: int, channels: int = 1) -> None:
        self.path = Path(path)
        self.sample_rate = sample_rate
        self.channels = channels
        self._file: sf.SoundFile | None = None

    def play(self, pcm: np.ndarray, sample_rate: int) -> None:
        if sample_rate != self.sample_rate:
            logger.warning(
                "dropping clip at %d Hz (sink is %d Hz)", sample_rate, self.sample_rate
            )
            return
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = sf.SoundFile(
                str(self.path),
                mode="w",
                samplerate=self.sample_rate,
                channels=self.channels,
                subtype="PCM_16",
                format="WAV",
            )
        self._file.write(pcm)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
