from .codec import decode, encode, encode_message
from .constants import (
    CONCERN_AUDIO,
    CONCERN_WHITEBOARD,
    T_AUDIO_CHUNK,
    T_CLEAR_CANVAS,
    T_DRAW_OPERATION,
    T_ERROR,
    T_TEXT,
)
from .messages import (
    AudioChunkMessage,
    ClearCanvasMessage,
    DrawOperation,
    DrawOperationMessage,
    Envelope,
    ErrorMessage,
    GenericMessage,
    TextMessage,
)

__all__ = [
    "CONCERN_AUDIO",
    "CONCERN_WHITEBOARD",
    "T_AUDIO_CHUNK",
    "T_CLEAR_CANVAS",
    "T_DRAW_OPERATION",
    "T_ERROR",
    "T_TEXT",
    "AudioChunkMessage",
    "ClearCanvasMessage",
    "DrawOperation",
    "DrawOperationMessage",
    "Envelope",
    "ErrorMessage",
    "GenericMessage",
    "TextMessage",
    "decode",
    "encode",
    "encode_message",
]
