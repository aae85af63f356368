from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from classroom_sync.client.config import get_settings
from classroom_sync.client.connection import (
    ChannelOptions,
    ConnectionManager,
    Connector,
    channel_address,
)
from classroom_sync.protocol import CONCERN_WHITEBOARD

logger = logging.getLogger(__name__)


def load_events(jsonl_path: Path) -> list[tuple[int | None, dict]]:
    """
    Expected JSONL format:
      - record_jsonl.py output: {"ts": <ms>, "msg": {"type": ..., "payload": ...}}
      - or raw envelopes per line: {"type": ..., "payload": ...}
    """
    events: list[tuple[int | None, dict]] = []
    for line in jsonl_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        obj = json.loads(line)
        if isinstance(obj, dict) and isinstance(obj.get("msg"), dict):
            ts = obj.get("ts")
            events.append((int(ts) if isinstance(ts, (int, float)) else None, obj["msg"]))
        elif isinstance(obj, dict) and "type" in obj:
            events.append((None, obj))
    return events


async def replay(
    address: str,
    jsonl_path: Path,
    *,
    speed: float = 1.0,
    default_dt_ms: int = 0,
    only_type: str | None = None,
    open_timeout_s: float = 10.0,
    connector: Connector | None = None,
) -> int:
    """Publish previously-recorded envelopes into a channel; returns how many were sent."""
    events = load_events(jsonl_path)
    opened = asyncio.Event()
    conn = ConnectionManager(connector, name="replay")
    conn.open(address, ChannelOptions(on_open=opened.set, auto_reconnect=False))

    sent = 0
    try:
        await asyncio.wait_for(opened.wait(), timeout=open_timeout_s)
        prev_ts: int | None = None
        for ts, msg in events:
            t = msg.get("type")
            if only_type and t != only_type:
                continue

            if ts is not None and prev_ts is not None:
                dt_ms = max(0, ts - prev_ts)
            else:
                dt_ms = default_dt_ms

            prev_ts = ts if ts is not None else prev_ts
            if dt_ms:
                await asyncio.sleep((dt_ms / 1000.0) / max(0.01, speed))

            if await conn.send(str(t), msg.get("payload")):
                sent += 1
            else:
                logger.warning("channel closed; stopping replay after %d envelopes", sent)
                break
    except asyncio.TimeoutError:
        logger.error("could not open %s within %.1fs", address, open_timeout_s)
    finally:
        await conn.close()
    return sent


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay recorded envelopes into a classroom channel.")
    ap.add_argument("--relay", default=None, help="Relay URL (default: CLASSROOM_RELAY_URL)")
    ap.add_argument("--room", required=True, help="Room id")
    ap.add_argument("--concern", default=CONCERN_WHITEBOARD, help="Channel concern (whiteboard|audio)")
    ap.add_argument("--in", dest="inp", required=True, help="Input JSONL path")
    ap.add_argument("--speed", type=float, default=1.0, help="Speed multiplier (2.0 = 2x faster)")
    ap.add_argument("--default-dt-ms", type=int, default=0, help="Delay between envelopes if no timestamps")
    ap.add_argument(
        "--only-type",
        default=None,
        help="If set, only replay envelopes of this type (e.g. 'draw_operation').",
    )
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    relay = args.relay or get_settings().relay_url
    asyncio.run(
        replay(
            channel_address(relay, args.room, args.concern),
            Path(args.inp),
            speed=args.speed,
            default_dt_ms=args.default_dt_ms,
            only_type=args.only_type,
        )
    )


if __name__ == "__main__":
    main()
