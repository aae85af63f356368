from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Fixed per session, supplied by the page; never negotiated over the wire."""

    PUBLISHER = "publisher"  # teacher: originates draw / audio events
    SUBSCRIBER = "subscriber"  # student: consumes relayed events only
