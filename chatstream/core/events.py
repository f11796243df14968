"""Stream payloads delivered to subscribers. All events are Pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TerminalState(str, Enum):
    """Final disposition of one stream."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAULT = "fault"


class StreamUpdate(BaseModel):
    """Cumulative text for a stream, or its terminal notice when done=True."""

    stream_id: str
    text: str = Field(default="", description="Full text delivered so far (not a delta)")
    done: bool = False
    state: Optional[TerminalState] = Field(
        default=None, description="Set only on the terminal notice"
    )
    error: Optional[str] = None


class StreamOutcome(BaseModel):
    """What emit() reports once a stream reaches a terminal state."""

    stream_id: Optional[str] = None
    state: TerminalState
    text: str = ""
    steps: int = Field(default=0, ge=0, description="Number of on_step calls made")
