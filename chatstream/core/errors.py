"""Exceptions raised by the streaming core. Cancellation is an outcome, not an error."""

from __future__ import annotations


class ChatStreamError(Exception):
    """Base class for chatstream errors."""


class EmitterFault(ChatStreamError):
    """A delivery callback raised; the stream is terminated and never retried."""

    def __init__(self, stream_id: str | None, delivered_text: str, cause: BaseException) -> None:
        self.stream_id = stream_id
        self.delivered_text = delivered_text
        self.cause = cause
        label = stream_id or "<anonymous>"
        super().__init__(f"stream {label} faulted after {len(delivered_text)} chars: {cause!r}")


class SubscriptionMisuse(ChatStreamError):
    """Caller wiring bug: unknown stream, duplicate open, re-entrant publish, or no active scope."""
