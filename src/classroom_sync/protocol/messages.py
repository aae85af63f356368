from __future__ import annotations

from typing import Any, Literal, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Surface coordinates:
# - x,y are surface-local pixels (not normalized)
# - strokeWidth on the wire, stroke_width in Python


class DrawOperation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["start", "move", "end"]
    x: float
    y: float
    color: str
    stroke_width: float = Field(alias="strokeWidth", gt=0)


class _Envelope(BaseModel):
    def wire_payload(self) -> Any:
        """Payload as it appears on the wire (aliases applied, JSON-safe)."""
        return self.model_dump(mode="json", by_alias=True)["payload"]


class DrawOperationMessage(_Envelope):
    type: Literal["draw_operation"] = "draw_operation"
    payload: DrawOperation


class ClearCanvasMessage(_Envelope):
    type: Literal["clear_canvas"] = "clear_canvas"
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class AudioChunkMessage(_Envelope):
    type: Literal["audio_chunk"] = "audio_chunk"
    # base64 of one self-contained WAV segment
    payload: str


class TextMessage(_Envelope):
    type: Literal["text"] = "text"
    payload: str


class ErrorMessage(_Envelope):
    type: Literal["error"] = "error"
    payload: None = None


class GenericMessage(_Envelope):
    """Any envelope whose type this package does not recognize."""

    type: str
    payload: Any = None


Envelope: TypeAlias = Union[
    DrawOperationMessage,
    ClearCanvasMessage,
    AudioChunkMessage,
    TextMessage,
    ErrorMessage,
    GenericMessage,
]

KNOWN_MESSAGES: dict[str, type[_Envelope]] = {
    "draw_operation": DrawOperationMessage,
    "clear_canvas": ClearCanvasMessage,
    "audio_chunk": AudioChunkMessage,
    "text": TextMessage,
    "error": ErrorMessage,
}
