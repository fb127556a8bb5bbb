"""
Conversation history persistence.

History is stored as a single JSON document:

    {"timeStamp": "2024-11-02T14:03:11",
     "messages": [{"role": "user", "content": "..."}, ...]}
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .conversation import ChatMessage, MessageRole

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


class ConversationHistory(BaseModel):
    """Persisted conversation: ordered messages and when they were saved."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str = Field(default_factory=_now, alias="timeStamp")
    messages: list[ChatMessage] = Field(default_factory=list)


def persistable_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    """
    Messages worth keeping across runs.

    System messages and tool plumbing (assistant tool-call requests and tool
    results) are dropped so a reloaded history is always a valid request prefix.
    """
    return [
        message
        for message in messages
        if message.role is MessageRole.USER
        or (message.role is MessageRole.ASSISTANT and not message.tool_calls and message.content)
    ]


class HistoryStore(Protocol):
    """Load/save interface for conversation history."""

    async def get(self) -> ConversationHistory:
        ...

    async def put(self, history: ConversationHistory) -> None:
        ...


class JsonHistoryStore:
    """HistoryStore backed by a JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def get(self) -> ConversationHistory:
        """Load history; a missing or unreadable file yields an empty history."""
        if not self.path.exists():
            logger.info(f"No history found at {self.path}")
            return ConversationHistory()

        try:
            raw_json = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            history = ConversationHistory.model_validate_json(raw_json)
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load history from {self.path}: {e}")
            return ConversationHistory()

        logger.info(f"Loading conversation from: {history.timestamp}")
        return history

    async def put(self, history: ConversationHistory) -> None:
        """Write history as indented JSON, replacing the previous file."""
        payload = history.model_dump_json(by_alias=True, exclude_none=True, indent=2)
        await asyncio.to_thread(self.path.write_text, payload, encoding="utf-8")
        logger.debug(f"Saved {len(history.messages)} messages to {self.path}")
