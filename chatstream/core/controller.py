"""Cancellation token for one in-flight stream."""

from __future__ import annotations


class StreamController:
    """Holds a single continuation flag. Moves only from continuing to cancelled."""

    __slots__ = ("_continuing",)

    def __init__(self) -> None:
        self._continuing = True

    def request_cancel(self) -> None:
        self._continuing = False

    def is_continuing(self) -> bool:
        return self._continuing

    def __repr__(self) -> str:
        return f"StreamController(continuing={self._continuing})"
