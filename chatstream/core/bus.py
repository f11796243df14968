"""Stream Bus: Redis pub/sub relay of StreamUpdate events between processes."""

from __future__ import annotations

import asyncio
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel

from chatstream.core.broadcast import StreamBroadcast, Subscription
from chatstream.core.events import StreamUpdate, TerminalState

logger = logging.getLogger(__name__)

CH_STREAM_UPDATE = "chatstream:stream_update"


def _serialize(payload: BaseModel) -> str:
    return payload.model_dump_json()


def _deserialize(raw: bytes, model: type[BaseModel]) -> BaseModel:
    return model.model_validate_json(raw.decode("utf-8"))


class StreamBus:
    """Forwards local broadcast streams to Redis and replays remote ones locally."""

    def __init__(self, redis_url: str, channel: str = CH_STREAM_UPDATE) -> None:
        self._redis_url = redis_url
        self._channel = channel
        self._client: aioredis.Redis | None = None
        self._pubsub: aioredis.client.PubSub | None = None
        self._forwarded: list[Subscription] = []
        self._drains: set[asyncio.Task] = set()
        self._running = False

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=False,
            )
            await self._client.ping()
        logger.info("StreamBus connected to Redis")

    async def disconnect(self) -> None:
        for sub in self._forwarded:
            sub.unsubscribe()
        self._forwarded.clear()
        for task in self._drains:
            task.cancel()
        self._drains.clear()
        if self._pubsub:
            await self._pubsub.close()
            self._pubsub = None
        if self._client:
            await self._client.close()
            self._client = None
        self._running = False

    async def _ensure_connected(self) -> None:
        if self._client is None:
            await self.connect()

    async def publish_update(self, payload: StreamUpdate) -> None:
        await self._ensure_connected()
        await self._client.publish(self._channel, _serialize(payload))
        if payload.done:
            logger.debug("published terminal update", extra={"stream_id": payload.stream_id})

    async def forward(self, broadcast: StreamBroadcast, stream_id: str) -> Subscription:
        """Subscribe to a local stream and publish each of its updates to Redis.

        Subscriber callbacks are synchronous, so updates are queued on a
        single drain task to keep their order on the wire.
        """
        await self._ensure_connected()
        queue: asyncio.Queue[StreamUpdate] = asyncio.Queue()

        async def drain() -> None:
            while True:
                update = await queue.get()
                await self.publish_update(update)
                if update.done:
                    return

        sub = broadcast.subscribe(stream_id, queue.put_nowait)
        self._forwarded.append(sub)
        task = asyncio.create_task(drain())
        self._drains.add(task)

        def _forget(_t: asyncio.Task) -> None:
            self._drains.discard(_t)
            if sub in self._forwarded:
                self._forwarded.remove(sub)
            if not _t.cancelled() and _t.exception() is not None:
                logger.error(
                    "forwarding failed: %s", _t.exception(), extra={"stream_id": stream_id}
                )

        task.add_done_callback(_forget)
        return sub

    async def run_listener(self, broadcast: StreamBroadcast) -> None:
        """Replay remote updates into broadcast. Blocks until stop()."""
        await self._ensure_connected()
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._running = True
        logger.info("StreamBus listener started", extra={"channel": self._channel})
        try:
            async for message in self._pubsub.listen():
                if not self._running:
                    break
                if message["type"] != "message":
                    continue
                data = message.get("data")
                if not data:
                    continue
                try:
                    update = _deserialize(data, StreamUpdate)
                except Exception as e:
                    logger.warning("failed to deserialize stream update", extra={"error": str(e)})
                    continue
                try:
                    self._apply(broadcast, update)
                except Exception as e:
                    logger.exception("replay failed for %s: %s", update.stream_id, e)
        finally:
            await self._pubsub.unsubscribe()
            self._running = False

    def _apply(self, broadcast: StreamBroadcast, update: StreamUpdate) -> None:
        if not broadcast.is_open(update.stream_id):
            if update.done:
                return
            broadcast.open(update.stream_id)
        if update.done:
            if update.text and update.text != broadcast.latest(update.stream_id):
                broadcast.publish(update.stream_id, update.text)
            broadcast.end(
                update.stream_id,
                update.state or TerminalState.COMPLETED,
                error=update.error,
            )
        else:
            broadcast.publish(update.stream_id, update.text)

    def stop(self) -> None:
        self._running = False
