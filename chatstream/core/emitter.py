"""Incremental emitter: paces fragments to a callback as cumulative text.

Each step hands on_step the full text delivered so far, never a delta, so a
consumer that missed earlier steps can resynchronise from the latest call.
Cancellation is checked between fragments only; a cancel lands at the next
fragment boundary. Pacing uses asyncio.sleep, so concurrent streams on the
same loop never block each other.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterable, AsyncIterator, Callable

from pydantic import BaseModel, Field

from chatstream.core.chunker import Granularity, chunk_text
from chatstream.core.controller import StreamController
from chatstream.core.errors import EmitterFault
from chatstream.core.events import StreamOutcome, TerminalState

logger = logging.getLogger(__name__)

DEFAULT_INTER_STEP_DELAY_MS = 30

StepCallback = Callable[[str], None]


class EmitOptions(BaseModel):
    """Chunking and pacing for one stream."""

    granularity: Granularity = Granularity.WORD
    inter_step_delay_ms: int = Field(default=DEFAULT_INTER_STEP_DELAY_MS, ge=0)


def _step(on_step: StepCallback, cumulative: str, stream_id: str | None) -> None:
    try:
        on_step(cumulative)
    except Exception as e:
        logger.warning("on_step raised, terminating stream", extra={"stream_id": stream_id})
        raise EmitterFault(stream_id, cumulative, e) from e


async def emit(
    payload: str,
    on_step: StepCallback,
    options: EmitOptions | None = None,
    controller: StreamController | None = None,
    *,
    stream_id: str | None = None,
) -> StreamOutcome:
    """Deliver payload to on_step fragment by fragment.

    Returns COMPLETED with the full payload, or CANCELLED with whatever was
    delivered before the controller was cancelled. Raises EmitterFault if
    on_step raises.
    """
    options = options or EmitOptions()
    controller = controller or StreamController()
    fragments = chunk_text(payload, options.granularity)
    delay = options.inter_step_delay_ms / 1000.0
    cumulative = ""
    steps = 0
    for i, fragment in enumerate(fragments):
        if not controller.is_continuing():
            logger.debug(
                "stream cancelled", extra={"stream_id": stream_id, "steps": steps}
            )
            return StreamOutcome(
                stream_id=stream_id, state=TerminalState.CANCELLED, text=cumulative, steps=steps
            )
        cumulative += fragment
        _step(on_step, cumulative, stream_id)
        steps += 1
        if i < len(fragments) - 1:
            await asyncio.sleep(delay)
    logger.debug("stream completed", extra={"stream_id": stream_id, "steps": steps})
    return StreamOutcome(
        stream_id=stream_id, state=TerminalState.COMPLETED, text=cumulative, steps=steps
    )


async def emit_increments(
    increments: AsyncIterable[str],
    on_step: StepCallback,
    controller: StreamController | None = None,
    *,
    stream_id: str | None = None,
) -> StreamOutcome:
    """Same contract as emit() for deltas arriving from elsewhere (e.g. a model stream).

    Empty deltas are skipped so cumulative length strictly grows. The source
    iterator is closed when the stream is cancelled.
    """
    controller = controller or StreamController()
    cumulative = ""
    steps = 0
    iterator = increments.__aiter__()
    try:
        async for delta in iterator:
            if not controller.is_continuing():
                logger.debug(
                    "relay cancelled", extra={"stream_id": stream_id, "steps": steps}
                )
                return StreamOutcome(
                    stream_id=stream_id,
                    state=TerminalState.CANCELLED,
                    text=cumulative,
                    steps=steps,
                )
            if not delta:
                continue
            cumulative += delta
            _step(on_step, cumulative, stream_id)
            steps += 1
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
    return StreamOutcome(
        stream_id=stream_id, state=TerminalState.COMPLETED, text=cumulative, steps=steps
    )


async def iter_cumulative(
    payload: str,
    options: EmitOptions | None = None,
    controller: StreamController | None = None,
) -> AsyncIterator[str]:
    """Pull-based form of emit(): yields cumulative text, stops on cancel."""
    options = options or EmitOptions()
    controller = controller or StreamController()
    fragments = chunk_text(payload, options.granularity)
    delay = options.inter_step_delay_ms / 1000.0
    cumulative = ""
    for i, fragment in enumerate(fragments):
        if not controller.is_continuing():
            return
        cumulative += fragment
        yield cumulative
        if i < len(fragments) - 1:
            await asyncio.sleep(delay)
