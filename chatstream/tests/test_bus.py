"""Tests for StreamBus (Redis relay) with mocked redis."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chatstream.core.bus import CH_STREAM_UPDATE, StreamBus, _deserialize, _serialize
from chatstream.core.events import StreamUpdate, TerminalState


def _mock_client(mock_pubsub=None):
    mock_client = MagicMock()
    mock_client.ping = AsyncMock()
    mock_client.publish = AsyncMock()
    mock_client.close = AsyncMock()
    if mock_pubsub is not None:
        mock_client.pubsub = MagicMock(return_value=mock_pubsub)
    return mock_client


def _mock_pubsub(messages):
    mock_pubsub = MagicMock()
    mock_pubsub.subscribe = AsyncMock()
    mock_pubsub.unsubscribe = AsyncMock()
    mock_pubsub.close = AsyncMock()

    async def listen():
        for m in messages:
            yield m

    mock_pubsub.listen = listen
    return mock_pubsub


def _msg(update: StreamUpdate) -> dict:
    return {
        "type": "message",
        "channel": CH_STREAM_UPDATE.encode("utf-8"),
        "data": _serialize(update).encode("utf-8"),
    }


def test_serialize_deserialize_update():
    payload = StreamUpdate(stream_id="s1", text="hi", done=True, state=TerminalState.CANCELLED)
    back = _deserialize(_serialize(payload).encode("utf-8"), StreamUpdate)
    assert back == payload


@pytest.mark.asyncio
async def test_connect_publish_disconnect():
    mock_client = _mock_client()
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = StreamBus("redis://fake:6379/0")
        await bus.publish_update(StreamUpdate(stream_id="s1", text="a"))
        mock_client.ping.assert_called_once()
        channel, raw = mock_client.publish.call_args.args
        assert channel == CH_STREAM_UPDATE
        assert json.loads(raw)["text"] == "a"
        await bus.disconnect()
        mock_client.close.assert_called_once()


@pytest.mark.asyncio
async def test_forward_publishes_updates_in_order(broadcast):
    mock_client = _mock_client()
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = StreamBus("redis://fake:6379/0")
        broadcast.open("s1")
        broadcast.publish("s1", "a")
        await bus.forward(broadcast, "s1")
        broadcast.publish("s1", "ab")
        broadcast.end("s1", TerminalState.COMPLETED)
        for _ in range(10):
            await asyncio.sleep(0)
        sent = [json.loads(c.args[1]) for c in mock_client.publish.call_args_list]
        assert [(u["text"], u["done"]) for u in sent] == [("a", False), ("ab", False), ("ab", True)]
        assert sent[-1]["state"] == "completed"
        await bus.disconnect()


@pytest.mark.asyncio
async def test_listener_replays_remote_stream(broadcast):
    got: list[StreamUpdate] = []
    messages = [
        {"type": "subscribe"},
        _msg(StreamUpdate(stream_id="r1", text="He")),
        _msg(StreamUpdate(stream_id="r1", text="Hello")),
        _msg(StreamUpdate(stream_id="r1", text="Hello", done=True, state=TerminalState.COMPLETED)),
    ]
    mock_pubsub = _mock_pubsub(messages)
    mock_client = _mock_client(mock_pubsub)
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = StreamBus("redis://fake:6379/0")
        original_apply = bus._apply

        def apply_and_watch(b, update):
            original_apply(b, update)
            if update.text == "He" and not update.done:
                b.subscribe("r1", got.append)

        bus._apply = apply_and_watch
        await bus.run_listener(broadcast)
    assert [u.text for u in got if not u.done] == ["He", "Hello"]
    assert got[-1].done and got[-1].state == TerminalState.COMPLETED
    assert not broadcast.is_open("r1")
    mock_pubsub.unsubscribe.assert_called_once()


@pytest.mark.asyncio
async def test_listener_skips_malformed_payload(broadcast, caplog):
    messages = [
        {"type": "message", "channel": CH_STREAM_UPDATE.encode("utf-8"), "data": b"not json"},
        {"type": "message", "channel": CH_STREAM_UPDATE.encode("utf-8"), "data": None},
        _msg(StreamUpdate(stream_id="ok", text="x")),
    ]
    mock_client = _mock_client(_mock_pubsub(messages))
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = StreamBus("redis://fake:6379/0")
        await bus.run_listener(broadcast)
    assert "failed to deserialize stream update" in caplog.text
    assert broadcast.latest("ok") == "x"


@pytest.mark.asyncio
async def test_listener_survives_undecodable_bytes(broadcast, caplog):
    messages = [
        {"type": "message", "channel": CH_STREAM_UPDATE.encode("utf-8"), "data": b"\xff\xfe"},
        _msg(StreamUpdate(stream_id="ok", text="x")),
    ]
    mock_client = _mock_client(_mock_pubsub(messages))
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = StreamBus("redis://fake:6379/0")
        await bus.run_listener(broadcast)
    assert "failed to deserialize stream update" in caplog.text
    assert broadcast.latest("ok") == "x"


@pytest.mark.asyncio
async def test_listener_ignores_terminal_for_unknown_stream(broadcast):
    messages = [
        _msg(StreamUpdate(stream_id="ghost", text="", done=True, state=TerminalState.CANCELLED))
    ]
    mock_client = _mock_client(_mock_pubsub(messages))
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = StreamBus("redis://fake:6379/0")
        await bus.run_listener(broadcast)
    assert not broadcast.is_open("ghost")


@pytest.mark.asyncio
async def test_stop_ends_listener(broadcast):
    messages = [
        _msg(StreamUpdate(stream_id="s1", text="a")),
        _msg(StreamUpdate(stream_id="s1", text="ab")),
    ]
    mock_client = _mock_client(_mock_pubsub(messages))
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = StreamBus("redis://fake:6379/0")
        broadcast.open("s1")
        broadcast.subscribe("s1", lambda u: bus.stop())
        await bus.run_listener(broadcast)
    assert broadcast.latest("s1") == "a"
