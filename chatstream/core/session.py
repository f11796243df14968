"""StreamSession: runs emitters as background tasks and publishes through a broadcast.

start_simulated() opens the stream before returning, so subscribers attached
in the same turn see every step. Each handle owns its own StreamController;
handle.cancel() is the disposer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterable, Awaitable, Callable

from chatstream.core.broadcast import StreamBroadcast
from chatstream.core.controller import StreamController
from chatstream.core.emitter import EmitOptions, StepCallback, emit, emit_increments
from chatstream.core.errors import EmitterFault
from chatstream.core.events import StreamOutcome, StreamUpdate, TerminalState
from chatstream.core.logging_config import bind_stream

logger = logging.getLogger(__name__)

_Driver = Callable[[StepCallback, StreamController], Awaitable[StreamOutcome]]


class StreamHandle:
    """One in-flight stream: its id, controller and driving task."""

    def __init__(self, stream_id: str, controller: StreamController, task: asyncio.Task) -> None:
        self.stream_id = stream_id
        self.controller = controller
        self._task = task

    def cancel(self) -> None:
        self.controller.request_cancel()

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> StreamOutcome:
        """Outcome of the stream.

        Raises EmitterFault if a subscriber raised; a relay source error is re-raised as is.
        """
        return await self._task


class StreamSession:
    """Starts streams against one broadcast and tracks them until they finish."""

    def __init__(self, broadcast: StreamBroadcast, options: EmitOptions | None = None) -> None:
        self._broadcast = broadcast
        self._options = options or EmitOptions()
        self._handles: dict[str, StreamHandle] = {}

    @property
    def broadcast(self) -> StreamBroadcast:
        return self._broadcast

    def active(self) -> list[StreamHandle]:
        return list(self._handles.values())

    def start_simulated(
        self,
        stream_id: str,
        text: str,
        options: EmitOptions | None = None,
    ) -> StreamHandle:
        """Stream a complete string locally with the configured chunking and pacing."""
        opts = options or self._options

        async def driver(on_step: StepCallback, controller: StreamController) -> StreamOutcome:
            return await emit(text, on_step, opts, controller, stream_id=stream_id)

        logger.info(
            "starting simulated stream",
            extra={
                "stream_id": stream_id,
                "granularity": opts.granularity.value,
                "chars": len(text),
            },
        )
        return self._start(stream_id, driver)

    def relay(
        self,
        stream_id: str,
        increments: AsyncIterable[str],
        controller: StreamController | None = None,
    ) -> StreamHandle:
        """Publish deltas produced elsewhere (model output, remote bus) as cumulative text."""

        async def driver(on_step: StepCallback, ctl: StreamController) -> StreamOutcome:
            return await emit_increments(increments, on_step, ctl, stream_id=stream_id)

        logger.info("starting relay stream", extra={"stream_id": stream_id})
        return self._start(stream_id, driver, controller)

    def cancel_all(self) -> None:
        for handle in list(self._handles.values()):
            handle.cancel()

    async def aclose(self) -> None:
        """Cancel every stream and wait for all of them to reach a terminal state."""
        self.cancel_all()
        handles = list(self._handles.values())
        if handles:
            await asyncio.gather(*(h.wait() for h in handles), return_exceptions=True)

    def _start(
        self,
        stream_id: str,
        driver: _Driver,
        controller: StreamController | None = None,
    ) -> StreamHandle:
        loop = asyncio.get_running_loop()
        self._broadcast.open(stream_id)
        controller = controller or StreamController()
        self._watch_release(stream_id, controller)
        task = loop.create_task(self._drive(stream_id, driver, controller))
        handle = StreamHandle(stream_id, controller, task)
        self._handles[stream_id] = handle

        def _forget(_t: asyncio.Task) -> None:
            if self._handles.get(stream_id) is handle:
                del self._handles[stream_id]

        task.add_done_callback(_forget)
        return handle

    async def _drive(
        self, stream_id: str, driver: _Driver, controller: StreamController
    ) -> StreamOutcome:
        with bind_stream(stream_id):
            return await self._run(stream_id, driver, controller)

    async def _run(
        self, stream_id: str, driver: _Driver, controller: StreamController
    ) -> StreamOutcome:
        def on_step(cumulative: str) -> None:
            self._broadcast.publish(stream_id, cumulative)

        try:
            outcome = await driver(on_step, controller)
        except EmitterFault as fault:
            logger.error(
                "stream fault: %s", fault.cause, extra={"stream_id": stream_id}
            )
            try:
                self._finish(stream_id, TerminalState.FAULT, error=str(fault.cause))
            except Exception as e:
                logger.exception("fault notice failed for %s: %s", stream_id, e)
            raise
        except asyncio.CancelledError:
            self._finish(stream_id, TerminalState.CANCELLED)
            raise
        except Exception as e:
            logger.error("stream source failed: %s", e, extra={"stream_id": stream_id})
            try:
                self._finish(stream_id, TerminalState.FAULT, error=str(e))
            except Exception as notice_error:
                logger.exception("fault notice failed for %s: %s", stream_id, notice_error)
            raise
        self._finish(stream_id, outcome.state)
        logger.info(
            "stream finished",
            extra={"stream_id": stream_id, "state": outcome.state.value, "steps": outcome.steps},
        )
        return outcome

    def _finish(self, stream_id: str, state: TerminalState, error: str | None = None) -> None:
        # The broadcast may already have released the stream (scope closed mid-flight).
        if self._broadcast.is_open(stream_id):
            self._broadcast.end(stream_id, state, error=error)

    def _watch_release(self, stream_id: str, controller: StreamController) -> None:
        """Cancel the controller as soon as the stream is ended or the broadcast closes.

        The emitter then stops at its next fragment boundary, before appending,
        so the outcome only counts text subscribers actually received.
        """

        def on_update(update: StreamUpdate) -> None:
            if update.done:
                controller.request_cancel()

        self._broadcast.subscribe(stream_id, on_update)
