from __future__ import annotations

import argparse
import asyncio
import json
import logging
import time
from pathlib import Path
from typing import TextIO

from classroom_sync.client.config import get_settings
from classroom_sync.client.connection import (
    ChannelOptions,
    ConnectionManager,
    ConnectionState,
    Connector,
    channel_address,
)
from classroom_sync.protocol import CONCERN_WHITEBOARD, Envelope

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _write_envelope(f: TextIO, envelope: Envelope, *, echo: bool) -> None:
    msg = {"type": envelope.type, "payload": envelope.wire_payload()}
    if echo:
        print(f"[record] type={envelope.type} msg={msg}")
    f.write(json.dumps({"ts": _now_ms(), "msg": msg}, ensure_ascii=False) + "\n")
    f.flush()


async def record(
    address: str,
    out_path: Path,
    *,
    echo: bool = False,
    duration_s: float | None = None,
    connector: Connector | None = None,
) -> None:
    """Append every envelope received on one channel to a JSONL file."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    settings = get_settings()
    done = asyncio.Event()

    def on_state_change(state: ConnectionState) -> None:
        if state is ConnectionState.EXHAUSTED:
            done.set()

    conn = ConnectionManager(connector, name="record")
    with out_path.open("a", encoding="utf-8") as f:
        conn.open(
            address,
            ChannelOptions(
                on_message=lambda env: _write_envelope(f, env, echo=echo),
                on_state_change=on_state_change,
                reconnect_interval_ms=settings.reconnect_interval_ms,
                max_reconnect_attempts=settings.max_reconnect_attempts,
            ),
        )
        try:
            await asyncio.wait_for(done.wait(), timeout=duration_s)
        except asyncio.TimeoutError:
            pass
        finally:
            await conn.close()


def main() -> None:
    ap = argparse.ArgumentParser(description="Record one classroom channel to a JSONL file.")
    ap.add_argument("--relay", default=None, help="Relay URL (default: CLASSROOM_RELAY_URL)")
    ap.add_argument("--room", required=True, help="Room id")
    ap.add_argument("--concern", default=CONCERN_WHITEBOARD, help="Channel concern (whiteboard|audio)")
    ap.add_argument("--out", required=True, help="Output JSONL path")
    ap.add_argument("--duration", type=float, default=None, help="Stop after N seconds")
    ap.add_argument("--print", action="store_true", help="Print received envelopes to stdout")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    relay = args.relay or get_settings().relay_url
    asyncio.run(
        record(
            channel_address(relay, args.room, args.concern),
            Path(args.out),
            echo=args.print,
            duration_s=args.duration,
        )
    )


if __name__ == "__main__":
    main()
