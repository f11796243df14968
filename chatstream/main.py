"""Entry point: stream a string to the terminal through a broadcast scope.

  python -m chatstream.main "Hello there, world"
  python -m chatstream.main --granularity char --delay-ms 20 --timeout-ms 300 "abc def"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from typing import TYPE_CHECKING, TextIO

from chatstream.config import get_config
from chatstream.core.broadcast import broadcast_scope
from chatstream.core.chunker import Granularity
from chatstream.core.emitter import EmitOptions
from chatstream.core.events import StreamOutcome, StreamUpdate
from chatstream.core.logging_config import setup_logging
from chatstream.core.session import StreamSession

if TYPE_CHECKING:
    from chatstream.config.loader import Config

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="chatstream", description="Simulate a streamed reply")
    parser.add_argument("text", help="Full text to stream")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("--granularity", choices=[g.value for g in Granularity], default=None)
    parser.add_argument("--delay-ms", type=int, default=None, help="Pause between fragments")
    parser.add_argument(
        "--timeout-ms", type=int, default=None, help="Cancel the stream after this long"
    )
    return parser.parse_args(argv)


async def run_stream(
    text: str,
    options: EmitOptions,
    timeout_ms: int | None = None,
    out: TextIO | None = None,
) -> StreamOutcome:
    if out is None:
        out = sys.stdout

    def render(update: StreamUpdate) -> None:
        if update.done:
            out.write("\n")
        else:
            out.write("\r" + update.text)
        out.flush()

    with broadcast_scope() as broadcast:
        session = StreamSession(broadcast, options)
        stream_id = f"sim_{uuid.uuid4().hex[:12]}"
        handle = session.start_simulated(stream_id, text)
        broadcast.subscribe(stream_id, render)
        if timeout_ms is not None:
            asyncio.get_running_loop().call_later(timeout_ms / 1000.0, handle.cancel)
        return await handle.wait()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    config: Config = get_config(args.config)
    setup_logging(level=config.logging.level, use_json=config.logging.use_json)
    options = config.streaming.to_options()
    if args.granularity:
        options = options.model_copy(update={"granularity": Granularity(args.granularity)})
    if args.delay_ms is not None:
        if args.delay_ms < 0:
            logger.error("--delay-ms must be non-negative")
            sys.exit(2)
        options = options.model_copy(update={"inter_step_delay_ms": args.delay_ms})
    outcome = asyncio.run(run_stream(args.text, options, args.timeout_ms))
    logger.info("stream %s", outcome.state.value, extra={"steps": outcome.steps})


if __name__ == "__main__":
    main()
