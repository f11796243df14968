"""Stream Broadcast: fan out one stream's cumulative text to many subscribers.

A StreamBroadcast is constructed explicitly per session and either passed to
consumers or installed with broadcast_scope(). Everything runs on the event
loop thread, so there are no locks; delivery iterates over a snapshot of the
subscriber list and skips subscriptions detached mid-delivery.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator

from chatstream.core.errors import SubscriptionMisuse
from chatstream.core.events import StreamUpdate, TerminalState

logger = logging.getLogger(__name__)

Subscriber = Callable[[StreamUpdate], None]

_current_broadcast: contextvars.ContextVar["StreamBroadcast | None"] = contextvars.ContextVar(
    "chatstream_broadcast", default=None
)


class Subscription:
    """Handle returned by subscribe(). unsubscribe() is idempotent."""

    def __init__(self, broadcast: "StreamBroadcast", stream_id: str, callback: Subscriber) -> None:
        self._broadcast = broadcast
        self.stream_id = stream_id
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._broadcast._detach(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: object) -> None:
        self.unsubscribe()


@dataclass
class _StreamState:
    subscribers: list[Subscription] = field(default_factory=list)
    latest: str | None = None
    delivering: bool = False


class StreamBroadcast:
    """Registry of in-flight streams keyed by stream id."""

    def __init__(self) -> None:
        self._streams: dict[str, _StreamState] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def stream_ids(self) -> list[str]:
        return list(self._streams)

    def is_open(self, stream_id: str) -> bool:
        return stream_id in self._streams

    def latest(self, stream_id: str) -> str | None:
        return self._require(stream_id).latest

    def subscriber_count(self, stream_id: str) -> int:
        return len(self._require(stream_id).subscribers)

    def open(self, stream_id: str) -> None:
        if self._closed:
            raise SubscriptionMisuse("broadcast is closed")
        if stream_id in self._streams:
            raise SubscriptionMisuse(f"stream {stream_id!r} is already open")
        self._streams[stream_id] = _StreamState()
        logger.debug("stream opened", extra={"stream_id": stream_id})

    def subscribe(self, stream_id: str, callback: Subscriber) -> Subscription:
        """Attach callback; a late subscriber immediately gets the latest text once."""
        state = self._require(stream_id)
        sub = Subscription(self, stream_id, callback)
        state.subscribers.append(sub)
        if state.latest is not None:
            try:
                callback(StreamUpdate(stream_id=stream_id, text=state.latest))
            except Exception:
                sub.unsubscribe()
                raise
        return sub

    def publish(self, stream_id: str, cumulative_text: str) -> None:
        state = self._require(stream_id)
        if state.delivering:
            raise SubscriptionMisuse(f"re-entrant publish on stream {stream_id!r}")
        state.latest = cumulative_text
        self._deliver(state, StreamUpdate(stream_id=stream_id, text=cumulative_text))

    def end(
        self,
        stream_id: str,
        terminal_state: TerminalState,
        error: str | None = None,
    ) -> None:
        """Notify subscribers of the terminal state, then release the stream."""
        state = self._require(stream_id)
        if state.delivering:
            raise SubscriptionMisuse(f"stream {stream_id!r} ended from its own subscriber")
        update = StreamUpdate(
            stream_id=stream_id,
            text=state.latest or "",
            done=True,
            state=TerminalState(terminal_state),
            error=error,
        )
        try:
            self._deliver(state, update)
        finally:
            for sub in state.subscribers:
                sub.active = False
            state.subscribers.clear()
            self._streams.pop(stream_id, None)
            logger.debug(
                "stream ended", extra={"stream_id": stream_id, "state": update.state.value}
            )

    def close(self) -> None:
        """End every open stream as cancelled and refuse new streams."""
        self._closed = True
        for stream_id in list(self._streams):
            try:
                self.end(stream_id, TerminalState.CANCELLED)
            except Exception as e:
                # Teardown keeps going; the stream is already released by end().
                logger.exception("subscriber failed while closing %s: %s", stream_id, e)

    def _deliver(self, state: _StreamState, update: StreamUpdate) -> None:
        state.delivering = True
        try:
            for sub in list(state.subscribers):
                if sub.active:
                    sub.callback(update)
        finally:
            state.delivering = False

    def _detach(self, sub: Subscription) -> None:
        state = self._streams.get(sub.stream_id)
        if state is None:
            return
        try:
            state.subscribers.remove(sub)
        except ValueError:
            pass

    def _require(self, stream_id: str) -> _StreamState:
        state = self._streams.get(stream_id)
        if state is None:
            raise SubscriptionMisuse(f"unknown stream {stream_id!r}")
        return state


@contextmanager
def broadcast_scope(broadcast: StreamBroadcast | None = None) -> Iterator[StreamBroadcast]:
    """Install a broadcast for the current context; closes it on exit."""
    broadcast = broadcast or StreamBroadcast()
    token = _current_broadcast.set(broadcast)
    try:
        yield broadcast
    finally:
        _current_broadcast.reset(token)
        broadcast.close()


def use_broadcast() -> StreamBroadcast:
    broadcast = _current_broadcast.get()
    if broadcast is None:
        raise SubscriptionMisuse("use_broadcast() must be called within broadcast_scope()")
    return broadcast
