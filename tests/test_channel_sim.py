"""
Tests for the record / replay tools.
"""

import asyncio
import json

import pytest

from classroom_sync.client.connection import ChannelOptions, ConnectionManager
from classroom_sync.tools.channel_sim.record_jsonl import record
from classroom_sync.tools.channel_sim.replay_jsonl import load_events, replay

from conftest import wait_until

ADDR = "ws://relay.test/ws?room=r1-whiteboard"

STROKE = [
    {"type": "draw_operation", "payload": {"kind": "start", "x": 1, "y": 1, "color": "#000", "strokeWidth": 2}},
    {"type": "draw_operation", "payload": {"kind": "move", "x": 5, "y": 5, "color": "#000", "strokeWidth": 2}},
    {"type": "draw_operation", "payload": {"kind": "end", "x": 5, "y": 5, "color": "#000", "strokeWidth": 2}},
    {"type": "clear_canvas", "payload": {}},
]


def test_load_events_accepts_both_formats(tmp_path):
    path = tmp_path / "in.jsonl"
    path.write_text(
        json.dumps({"ts": 1000, "msg": STROKE[0]}) + "\n\n" + json.dumps(STROKE[3]) + "\n",
        encoding="utf-8",
    )
    assert load_events(path) == [(1000, STROKE[0]), (None, STROKE[3])]


@pytest.mark.asyncio
async def test_replay_publishes_into_channel(tmp_path, hub, test_settings):
    path = tmp_path / "stroke.jsonl"
    path.write_text("\n".join(json.dumps(m) for m in STROKE) + "\n", encoding="utf-8")

    received = []
    listener = ConnectionManager(hub.connect, name="listener", settings=test_settings)
    listener.open(ADDR, ChannelOptions(on_message=received.append))
    await wait_until(lambda: listener.is_open)

    sent = await replay(ADDR, path, only_type="draw_operation", connector=hub.connect)
    assert sent == 3
    await wait_until(lambda: len(received) == 3)
    assert [e.payload.kind for e in received] == ["start", "move", "end"]
    await listener.close()


@pytest.mark.asyncio
async def test_record_appends_envelopes(tmp_path, hub, test_settings):
    out = tmp_path / "rec" / "session.jsonl"
    recorder = asyncio.create_task(record(ADDR, out, duration_s=0.3, connector=hub.connect))

    publisher = ConnectionManager(hub.connect, name="pub", settings=test_settings)
    publisher.open(ADDR)
    await wait_until(lambda: publisher.is_open and len(hub.rooms.get(ADDR, [])) == 2)
    for msg in STROKE:
        assert await publisher.send(msg["type"], msg["payload"])
    await recorder
    await publisher.close()

    lines = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    assert [line["msg"]["type"] for line in lines] == [m["type"] for m in STROKE]
    assert lines[1]["msg"]["payload"]["strokeWidth"] == 2.0
    assert all(isinstance(line["ts"], int) for line in lines)
