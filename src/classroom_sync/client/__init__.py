from .connection import ChannelOptions, ConnectionManager, ConnectionState, channel_address
from .draw_relay import DrawRelay
from .audio_relay import AudioRelay
from .roles import Role
from .session import ClassroomSession, Notice

__all__ = [
    "AudioRelay",
    "ChannelOptions",
    "ClassroomSession",
    "ConnectionManager",
    "ConnectionState",
    "DrawRelay",
    "Notice",
    "Role",
    "channel_address",
]
