"""chatstream: incremental message delivery for the chat workspace front end."""

from chatstream.core.assembler import Message, Part, extract_text
from chatstream.core.broadcast import (
    StreamBroadcast,
    Subscription,
    broadcast_scope,
    use_broadcast,
)
from chatstream.core.chunker import Granularity, chunk_text
from chatstream.core.controller import StreamController
from chatstream.core.emitter import EmitOptions, emit, emit_increments, iter_cumulative
from chatstream.core.errors import ChatStreamError, EmitterFault, SubscriptionMisuse
from chatstream.core.events import StreamOutcome, StreamUpdate, TerminalState
from chatstream.core.session import StreamHandle, StreamSession

__all__ = [
    "ChatStreamError",
    "EmitOptions",
    "EmitterFault",
    "Granularity",
    "Message",
    "Part",
    "StreamBroadcast",
    "StreamController",
    "StreamHandle",
    "StreamOutcome",
    "StreamSession",
    "StreamUpdate",
    "Subscription",
    "SubscriptionMisuse",
    "TerminalState",
    "broadcast_scope",
    "chunk_text",
    "emit",
    "emit_increments",
    "extract_text",
    "iter_cumulative",
    "use_broadcast",
]
