"""Artifact side-channel: `data-*` events streamed alongside a message.

Events are validated into a discriminated union, kept in a bounded buffer,
and folded by ArtifactAssembler into the artifact being previewed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Annotated, Callable, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

ArtifactKind = Literal["text", "code", "image", "spreadsheet"]

DEFAULT_MAX_EVENTS = 1000
DEFAULT_IDLE_CLEAR_SECONDS = 5.0


class _DataEvent(BaseModel):
    id: Optional[str] = None


class DataIdEvent(_DataEvent):
    type: Literal["data-id"]
    data: str


class DataTitleEvent(_DataEvent):
    type: Literal["data-title"]
    data: str


class DataKindEvent(_DataEvent):
    type: Literal["data-kind"]
    data: ArtifactKind


class DataDeltaEvent(_DataEvent):
    type: Literal["data-codeDelta", "data-textDelta", "data-imageDelta", "data-spreadsheetDelta"]
    data: str


class DataClearEvent(_DataEvent):
    type: Literal["data-clear"]
    data: None = None


class DataFinishEvent(_DataEvent):
    type: Literal["data-finish"]
    data: None = None


DataStreamEvent = Annotated[
    Union[
        DataIdEvent,
        DataTitleEvent,
        DataKindEvent,
        DataDeltaEvent,
        DataClearEvent,
        DataFinishEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[DataStreamEvent] = TypeAdapter(DataStreamEvent)


def validate_data_stream_event(raw: object) -> Optional[DataStreamEvent]:
    """Return the typed event, or None (logged) when raw is not a valid data event."""
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(
            "invalid data stream event",
            extra={"issues": e.errors(include_url=False, include_input=False)},
        )
        return None


class DataStreamBuffer:
    """Bounded, append-only event buffer for the message currently streaming.

    Keeps the most recent max_events. `total` counts every event appended
    since the last clear(), so readers can tell new events apart even after
    old ones were dropped. With idle_clear_seconds set and a running loop,
    the buffer clears itself after that long without appends.
    """

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        idle_clear_seconds: float | None = None,
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be >= 1")
        self._max_events = max_events
        self._idle_clear_seconds = idle_clear_seconds
        self._events: list[DataStreamEvent] = []
        self._total = 0
        self._idle_timer: asyncio.TimerHandle | None = None

    @property
    def events(self) -> list[DataStreamEvent]:
        return list(self._events)

    @property
    def total(self) -> int:
        return self._total

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: DataStreamEvent) -> None:
        self._events.append(event)
        self._total += 1
        if len(self._events) > self._max_events:
            del self._events[: len(self._events) - self._max_events]
        self._schedule_idle_clear()

    def append_raw(self, raw: object) -> Optional[DataStreamEvent]:
        """Validate and append; invalid events are dropped."""
        event = validate_data_stream_event(raw)
        if event is not None:
            self.append(event)
        return event

    def clear(self) -> None:
        self._events.clear()
        self._total = 0
        self._cancel_idle_clear()

    def _schedule_idle_clear(self) -> None:
        if self._idle_clear_seconds is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_idle_clear()
        self._idle_timer = loop.call_later(self._idle_clear_seconds, self.clear)

    def _cancel_idle_clear(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None


class Artifact(BaseModel):
    id: str
    kind: ArtifactKind
    title: str
    content: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ArtifactAssembler:
    """Folds buffered data events into the artifact being streamed.

    process() only applies events it has not seen yet and starts over when
    the buffer has been cleared. A failure on one event is logged and the
    remaining events are still applied.
    """

    def __init__(
        self,
        on_open: Callable[[Artifact], None] | None = None,
        on_update: Callable[[Artifact], None] | None = None,
    ) -> None:
        self._on_open = on_open
        self._on_update = on_update
        self._seen = 0
        self._content = ""
        self._pending: dict[str, str] = {}
        self.artifact: Artifact | None = None

    @property
    def content(self) -> str:
        return self._content

    def process(self, buffer: DataStreamBuffer) -> int:
        """Apply new events from buffer; returns how many were applied."""
        if self._seen > buffer.total:
            self._seen = 0
        new_count = buffer.total - self._seen
        self._seen = buffer.total
        if new_count <= 0:
            return 0
        events = buffer.events
        fresh = events[-min(new_count, len(events)):] if events else []
        for event in fresh:
            try:
                self.apply(event)
            except Exception as e:
                logger.exception("error processing data event %s: %s", event.type, e)
        return len(fresh)

    def apply(self, event: DataStreamEvent) -> None:
        if isinstance(event, DataIdEvent):
            self._content = ""
            self._pending = {"id": event.data}
        elif isinstance(event, DataTitleEvent):
            self._pending["title"] = event.data
        elif isinstance(event, DataKindEvent):
            self._pending["kind"] = event.data
            if all(self._pending.get(k) for k in ("id", "title", "kind")):
                self.artifact = Artifact(
                    id=self._pending["id"],
                    kind=self._pending["kind"],
                    title=self._pending["title"],
                )
                if self._on_open:
                    self._on_open(self.artifact)
        elif isinstance(event, DataDeltaEvent):
            self._content += event.data
            self._update_content()
        elif isinstance(event, DataClearEvent):
            self._content = ""
            self._update_content()
        elif isinstance(event, DataFinishEvent):
            self._content = ""
            self._pending = {}

    def _update_content(self) -> None:
        if self.artifact is None:
            return
        self.artifact.content = self._content
        self.artifact.updated_at = datetime.now(timezone.utc)
        if self._on_update:
            self._on_update(self.artifact)
