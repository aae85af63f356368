from __future__ import annotations

import base64
import io
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, ImageColor, ImageDraw

Point = tuple[float, float]


class Surface(Protocol):
    """Drawing surface the whiteboard relay mutates (2d-canvas-like)."""

    stroke_color: str
    stroke_width: float

    def move_to(self, x: float, y: float) -> None: ...

    def line_to(self, x: float, y: float) -> None: ...

    def end_path(self) -> None: ...

    def clear(self) -> None: ...

    def save(self) -> None: ...

    def restore(self) -> None: ...


@dataclass(frozen=True)
class Segment:
    start: Point
    end: Point
    color: str
    width: float


@contextmanager
def saved_state(surface: Surface) -> Iterator[Surface]:
    """save() / restore() around a block, restoring even if drawing fails."""
    surface.save()
    try:
        yield surface
    finally:
        surface.restore()


class ImageSurface:
    """
    Pillow-backed whiteboard surface.

    - Coordinates are surface-local pixels
    - `stroke_color` / `stroke_width` are the ambient style used by `line_to`
    - `save()` / `restore()` stack the ambient style and the current point
    """

    def __init__(
        self,
        width: int = 1280,
        height: int = 720,
        *,
        background: str = "#ffffff",
        stroke_color: str = "#000000",
        stroke_width: float = 3.0,
    ) -> None:
        self.width = width
        self.height = height
        self.background = background
        self.image = Image.new("RGBA", (width, height), background)
        self._draw = ImageDraw.Draw(self.image)
        self.stroke_color = stroke_color
        self.stroke_width = stroke_width
        self.segments: list[Segment] = []
        self._current: Point | None = None
        self._stack: list[tuple[str, float, Point | None]] = []

    @property
    def current_point(self) -> Point | None:
        return self._current

    def move_to(self, x: float, y: float) -> None:
        self._current = (float(x), float(y))

    def line_to(self, x: float, y: float) -> None:
        end = (float(x), float(y))
        if self._current is None:
            # No open path: behaves like move_to (2d canvas semantics).
            self._current = end
            return
        self._segment(self._current, end)
        self._current = end

    def end_path(self) -> None:
        self._current = None

    def clear(self) -> None:
        self._draw.rectangle([0, 0, self.width, self.height], fill=self.background)
        self.segments.clear()

    def save(self) -> None:
        self._stack.append((self.stroke_color, self.stroke_width, self._current))

    def restore(self) -> None:
        if not self._stack:
            return
        self.stroke_color, self.stroke_width, self._current = self._stack.pop()

    def _segment(self, a: Point, b: Point) -> None:
        # Validate the color before touching pixels (ValueError on bad input).
        fill = ImageColor.getrgb(self.stroke_color)
        w = max(1, int(round(self.stroke_width)))
        self._draw.line([a, b], fill=fill, width=w)
        if w > 2:
            # round caps / joins
            r = w / 2.0
            for x, y in (a, b):
                self._draw.ellipse([x - r, y - r, x + r, y + r], fill=fill)
        self.segments.append(Segment(a, b, self.stroke_color, self.stroke_width))

    def to_png_b64(self) -> str:
        """Snapshot the surface as a PNG (base64, no data-url prefix)."""
        bio = io.BytesIO()
        self.image.save(bio, format="PNG", optimize=True)
        return base64.b64encode(bio.getvalue()).decode("ascii")
