"""Bounded chat log carried in the room record."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .state import ChatMessage

CHAT_HISTORY_LIMIT = 20
CHAT_TYPES = ("emote", "quickchat")


def append_message(
    messages: Sequence[ChatMessage], message: ChatMessage, limit: int = CHAT_HISTORY_LIMIT
) -> List[ChatMessage]:
    """Return the log with ``message`` appended, keeping the newest ``limit``."""

    return [*messages, message][-limit:]


def chat_update(messages: Sequence[ChatMessage]) -> Dict[str, Any]:
    # The whole log is written back; concurrent sends are last-write-wins.
    return {"chatMessages": [m.to_wire() for m in messages]}
