"""Message parts and text assembly.

A message is an ordered list of typed parts. Only `text` parts carry text
for assembly; tool calls, attachments and the rest are kept as-is and
skipped by extract_text().
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

TEXT_PART = "text"


class Part(BaseModel):
    """One typed part. Unknown fields of non-text parts are preserved."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None


class Message(BaseModel):
    id: str = ""
    role: str = "assistant"
    parts: list[Part] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def text_part(text: str) -> Part:
    return Part(type=TEXT_PART, text=text)


def extract_text(message: Message, separator: str = "") -> str:
    """Join the text parts of message in stored order."""
    return separator.join(
        part.text or "" for part in message.parts if part.type == TEXT_PART
    )


def _parse_created_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("unparsable createdAt %r, using now", value)
    return datetime.now(timezone.utc)


def _scalar_text(value: Any) -> str:
    # JSON spelling: true/false, and 3.0 renders as 3
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _text_from_content(content: Any) -> str:
    if isinstance(content, list):
        return "".join(
            _scalar_text(c.get("text") or "") if isinstance(c, dict) else "" for c in content
        )
    return _scalar_text(content)


def message_from_record(record: dict[str, Any]) -> Message:
    """Build a Message from a backend thread record.

    `content` may be a JSON string, an already-decoded dict, or plain text.
    A dict with a `parts` list keeps its parts; otherwise the text is
    collapsed into a single text part.
    """
    raw = record.get("content")
    created_at = _parse_created_at(record.get("createdAt"))
    base = {"id": str(record.get("id", "")), "role": record.get("role", "assistant")}

    parsed: Optional[dict[str, Any]] = None
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return Message(**base, parts=[text_part(raw)], created_at=created_at)
        if isinstance(decoded, dict):
            parsed = decoded
        else:
            return Message(**base, parts=[text_part(raw)], created_at=created_at)
    elif isinstance(raw, dict):
        parsed = raw

    if parsed is not None and isinstance(parsed.get("parts"), list):
        parts = [
            Part.model_validate(p)
            for p in parsed["parts"]
            if isinstance(p, dict) and isinstance(p.get("type"), str)
        ]
        return Message(**base, parts=parts, created_at=created_at)

    text = ""
    if parsed is not None and parsed.get("content"):
        text = _text_from_content(parsed["content"])
    return Message(**base, parts=[text_part(text)], created_at=created_at)
