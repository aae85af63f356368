"""
Whiteboard relay.

Publisher: pointer events draw locally and are emitted as `draw_operation`
envelopes (start / move* / end). Local drawing never waits on the transport;
an emission that cannot be sent is dropped.

Subscriber: inbound operations are replayed onto the surface with the
operation's own color / width inside save() / restore(), so replay never
disturbs the subscriber's ambient style or current point.
"""

from __future__ import annotations

import logging
from typing import Literal

from PIL import ImageColor

from classroom_sync.protocol import (
    T_CLEAR_CANVAS,
    T_DRAW_OPERATION,
    ClearCanvasMessage,
    DrawOperation,
    DrawOperationMessage,
    Envelope,
)

from .connection import ConnectionManager
from .rendering import Point, Surface, saved_state
from .roles import Role

logger = logging.getLogger(__name__)


class DrawRelay:
    def __init__(
        self,
        connection: ConnectionManager,
        surface: Surface,
        role: Role,
        *,
        color: str = "#000000",
        stroke_width: float = 3.0,
    ) -> None:
        self.connection = connection
        self.surface = surface
        self.role = role
        self.color = color
        self.stroke_width = stroke_width

        self._attached = True
        self._drawing = False
        self._last_point: Point | None = None
        # Where the remote publisher's pen is; None outside a stroke.
        self._remote_pen: Point | None = None

        surface.stroke_color = color
        surface.stroke_width = stroke_width

    @property
    def is_publisher(self) -> bool:
        return self.role is Role.PUBLISHER

    @property
    def is_drawing(self) -> bool:
        return self._drawing

    def set_tool(self, *, color: str | None = None, stroke_width: float | None = None) -> bool:
        """Change the local pen. Invalid values are rejected and the pen is left as is."""
        if color is not None:
            try:
                ImageColor.getrgb(color)
            except ValueError:
                logger.warning("rejecting unknown stroke color %r", color)
                return False
        if stroke_width is not None and not stroke_width > 0:
            logger.warning("rejecting non-positive stroke width %r", stroke_width)
            return False

        if color is not None:
            self.color = color
            self.surface.stroke_color = color
        if stroke_width is not None:
            self.stroke_width = stroke_width
            self.surface.stroke_width = stroke_width
        return True

    # ------------------------------------------------------------------
    # Publisher side
    # ------------------------------------------------------------------

    async def pointer_down(self, x: float, y: float) -> bool:
        if not self._can_originate():
            return False
        self.surface.move_to(x, y)
        self._drawing = True
        self._last_point = (x, y)
        return await self._emit("start", x, y)

    async def pointer_move(self, x: float, y: float) -> bool:
        if not self._can_originate() or not self._drawing:
            return False
        try:
            self.surface.line_to(x, y)
        except ValueError as e:
            logger.warning("local segment not drawn: %s", e)
        self._last_point = (x, y)
        return await self._emit("move", x, y)

    async def pointer_up(self) -> bool:
        if not self._can_originate() or not self._drawing:
            return False
        self.surface.end_path()
        self._drawing = False
        x, y = self._last_point or (0.0, 0.0)
        self._last_point = None
        return await self._emit("end", x, y)

    # Leaving the surface ends the stroke exactly like releasing the pointer.
    pointer_leave = pointer_up

    async def clear(self) -> bool:
        if not self._can_originate():
            return False
        self.surface.clear()
        sent = await self.connection.send(T_CLEAR_CANVAS, {})
        if not sent:
            logger.debug("clear_canvas not broadcast (channel not open)")
        return sent

    def _can_originate(self) -> bool:
        if not self._attached:
            return False
        if not self.is_publisher:
            logger.debug("subscriber cannot originate draw operations")
            return False
        return True

    async def _emit(self, kind: Literal["start", "move", "end"], x: float, y: float) -> bool:
        op = DrawOperation(kind=kind, x=x, y=y, color=self.color, stroke_width=self.stroke_width)
        sent = await self.connection.send(T_DRAW_OPERATION, op)
        if not sent:
            logger.debug("draw %s dropped (channel not open)", kind)
        return sent

    # ------------------------------------------------------------------
    # Receiving side
    # ------------------------------------------------------------------

    def handle_envelope(self, envelope: Envelope) -> None:
        if not self._attached:
            return
        if isinstance(envelope, ClearCanvasMessage):
            self.surface.clear()
            self._remote_pen = None
        elif isinstance(envelope, DrawOperationMessage):
            if self.is_publisher:
                # Our own operations echoed back by the relay.
                return
            self.replay(envelope.payload)

    def replay(self, op: DrawOperation) -> None:
        with saved_state(self.surface):
            self.surface.stroke_color = op.color
            self.surface.stroke_width = op.stroke_width
            if op.kind == "start":
                self._remote_pen = (op.x, op.y)
            elif op.kind == "move":
                if self._remote_pen is None:
                    # Mid-stroke join (e.g. after a reconnect): nothing to extend.
                    return
                self.surface.move_to(*self._remote_pen)
                try:
                    self.surface.line_to(op.x, op.y)
                except ValueError as e:
                    logger.warning("skipping remote segment with bad style %r: %s", op.color, e)
                self._remote_pen = (op.x, op.y)
            else:
                self._remote_pen = None

    def detach(self) -> None:
        """Stop reacting to pointer input and inbound envelopes."""
        self._attached = False
        if self._drawing:
            self.surface.end_path()
        self._drawing = False
        self._last_point = None
        self._remote_pen = None
