"""Split a payload into fragments. Fragments always join back to the exact input."""

from __future__ import annotations

import re
from enum import Enum

_WHITESPACE_RUN = re.compile(r"(\s+)")


class Granularity(str, Enum):
    WORD = "word"
    CHAR = "char"


def chunk_text(payload: str, granularity: Granularity | str = Granularity.WORD) -> list[str]:
    """Return the ordered fragments of payload.

    WORD keeps each whitespace run as its own fragment; CHAR yields one
    fragment per character. An empty payload yields no fragments.
    """
    granularity = Granularity(granularity)
    if not payload:
        return []
    if granularity is Granularity.CHAR:
        return list(payload)
    return [part for part in _WHITESPACE_RUN.split(payload) if part]
