from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal, Optional

from classroom_sync.protocol import CONCERN_AUDIO, CONCERN_WHITEBOARD

from .audio import AudioSink, AudioSource
from .audio_relay import AudioRelay
from .config import Settings, get_settings
from .connection import (
    ChannelOptions,
    ConnectionManager,
    ConnectionState,
    Connector,
    channel_address,
)
from .draw_relay import DrawRelay
from .rendering import Surface
from .roles import Role

logger = logging.getLogger(__name__)

Channel = Literal["whiteboard", "audio"]


@dataclass(frozen=True)
class Notice:
    """User-visible status message (what the page shows as a toast)."""

    level: Literal["success", "info", "error"]
    text: str


class ClassroomSession:
    """
    One participant's view of a room: a whiteboard channel and an audio channel.

    The page supplies room identity, role, the drawing surface and the audio
    devices; it observes channel state and notices. Nothing here raises across
    that boundary: failures arrive as notices and state.
    """

    def __init__(
        self,
        room_id: str,
        role: Role,
        surface: Surface,
        *,
        audio_source: AudioSource | None = None,
        audio_sink: AudioSink | None = None,
        connector: Connector | None = None,
        settings: Settings | None = None,
        on_notice: Optional[Callable[[Notice], None]] = None,
        max_notices: int = 50,
    ) -> None:
        self.room_id = room_id
        self.role = role
        self.settings = settings or get_settings()
        self.on_notice = on_notice
        self.notices: deque[Notice] = deque(maxlen=max_notices)

        self.whiteboard = ConnectionManager(
            connector, name=f"{room_id}/{CONCERN_WHITEBOARD}", settings=self.settings
        )
        self.audio = ConnectionManager(
            connector, name=f"{room_id}/{CONCERN_AUDIO}", settings=self.settings
        )
        self.draw_relay = DrawRelay(self.whiteboard, surface, role)
        self.audio_relay = AudioRelay(
            self.audio,
            role,
            source=audio_source,
            sink=audio_sink,
            volume=self.settings.output_volume,
            on_device_error=self._on_device_error,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        base = self.settings.relay_url
        self.whiteboard.open(
            channel_address(base, self.room_id, CONCERN_WHITEBOARD),
            self._options(
                on_open=lambda: self._notify("success", "Connected to whiteboard session!"),
                on_message=self.draw_relay.handle_envelope,
                on_exhausted=lambda: self._notify(
                    "error", "Whiteboard connection failed. Please rejoin the session."
                ),
            ),
        )
        self.audio.open(
            channel_address(base, self.room_id, CONCERN_AUDIO),
            self._options(
                on_open=lambda: logger.info("[%s] audio channel open", self.room_id),
                on_message=self.audio_relay.handle_envelope,
                on_close=self.audio_relay.connection_lost,
                on_exhausted=lambda: self._notify(
                    "error", "Audio connection failed. Please rejoin the session."
                ),
            ),
        )
        logger.info("[%s] session started as %s", self.room_id, self.role.value)

    async def close(self) -> None:
        # Relays first, so nothing captures or draws on a dying channel.
        self.audio_relay.detach()
        self.draw_relay.detach()
        await self.whiteboard.close()
        await self.audio.close()
        logger.info("[%s] session closed", self.room_id)

    def _options(self, **callbacks) -> ChannelOptions:
        return ChannelOptions(
            auto_reconnect=self.settings.auto_reconnect,
            reconnect_interval_ms=self.settings.reconnect_interval_ms,
            max_reconnect_attempts=self.settings.max_reconnect_attempts,
            on_error=lambda exc: logger.warning("[%s] transport error: %s", self.room_id, exc),
            **callbacks,
        )

    # ------------------------------------------------------------------
    # Whiteboard (publisher)
    # ------------------------------------------------------------------

    async def clear_canvas(self) -> bool:
        """Wipe the board locally and for every subscriber in the room."""
        if self.role is not Role.PUBLISHER:
            return False
        sent = await self.draw_relay.clear()
        self._notify("success", "Canvas cleared!")
        return sent

    # ------------------------------------------------------------------
    # Microphone (publisher)
    # ------------------------------------------------------------------

    def toggle_microphone(self) -> bool:
        was_active = self.audio_relay.mic_active
        active = self.audio_relay.toggle_microphone()
        if active:
            self._notify("success", "Microphone activated")
        elif was_active:
            self._notify("success", "Microphone deactivated")
        return active

    def _on_device_error(self, exc: BaseException) -> None:
        self._notify("error", "Failed to access microphone")

    # ------------------------------------------------------------------
    # Observed state
    # ------------------------------------------------------------------

    def _manager(self, channel: Channel) -> ConnectionManager:
        return self.whiteboard if channel == CONCERN_WHITEBOARD else self.audio

    @property
    def whiteboard_state(self) -> ConnectionState:
        return self.whiteboard.state

    @property
    def audio_state(self) -> ConnectionState:
        return self.audio.state

    def is_reconnecting(self, channel: Channel) -> bool:
        return self._manager(channel).is_reconnecting

    def status_text(self, channel: Channel) -> str:
        state = self._manager(channel).state
        if state is ConnectionState.OPEN:
            return "Connected"
        if state is ConnectionState.CONNECTING:
            return "Connecting..."
        if state is ConnectionState.RECONNECTING:
            return "Reconnecting..."
        if state is ConnectionState.EXHAUSTED:
            return "Connection failed. Please rejoin the session."
        return "Disconnected"

    def _notify(self, level: Literal["success", "info", "error"], text: str) -> None:
        notice = Notice(level, text)
        self.notices.append(notice)
        if level == "error":
            logger.error("[%s] %s", self.room_id, text)
        else:
            logger.info("[%s] %s", self.room_id, text)
        if self.on_notice is not None:
            try:
                self.on_notice(notice)
            except Exception:
                logger.exception("on_notice callback raised")
