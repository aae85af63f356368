"""
Envelope codec.

Every frame is one JSON object ``{"type": ..., "payload": ...}``. Decoding never
raises: the relay endpoint is not guaranteed to emit conforming frames, so
anything that does not parse degrades to a ``text`` or ``error`` envelope.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from .messages import KNOWN_MESSAGES, Envelope, ErrorMessage, GenericMessage, TextMessage

logger = logging.getLogger(__name__)


def _dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def encode(type_: str, payload: Any) -> str:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", by_alias=True)
    return _dumps({"type": type_, "payload": payload})


def encode_message(message: Envelope) -> str:
    return _dumps({"type": message.type, "payload": message.wire_payload()})


def decode(frame: str | bytes) -> Envelope:
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = bytes(frame).decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Dropping undecodable binary frame (%d bytes)", len(frame))
            return ErrorMessage()

    head = frame.lstrip()
    if not head.startswith(("{", "[")):
        return TextMessage(payload=frame)

    try:
        obj = json.loads(frame)
    except ValueError as e:
        logger.warning("Malformed JSON frame: %s", e)
        return ErrorMessage()

    if not isinstance(obj, dict) or not isinstance(obj.get("type"), str):
        # Valid JSON, but not an envelope; pass it through untouched.
        return TextMessage(payload=frame)

    t = obj["type"]
    payload = obj.get("payload")
    model = KNOWN_MESSAGES.get(t)
    if model is None:
        return GenericMessage(type=t, payload=payload)
    try:
        return model.model_validate({"type": t, "payload": payload})
    except ValidationError as e:
        logger.warning("Invalid %s payload: %s", t, e.errors(include_url=False))
        return ErrorMessage()
