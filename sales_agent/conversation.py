"""
Conversation models and formatting.

Agent input is a tagged variant decided at the call boundary: either a
RawPrompt (a single free-text prompt) or a Conversation (an ordered list of
messages already built by the caller). format_messages normalizes both into
the canonical message sequence sent to the completion endpoint.
"""

import logging
from enum import Enum
from functools import singledispatch
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_SYSTEM_PROMPT
from .errors import InvalidAgentInputError

logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    """Message roles understood by the completion endpoint."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallRequest(BaseModel):
    """
    A tool invocation requested by the completion endpoint.

    Arguments are kept exactly as received (a JSON object serialized as text);
    the dispatcher deserializes them into the named tool's argument model.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Request-scoped identifier assigned by the endpoint")
    name: str = Field(description="Name of the tool to execute")
    arguments: str = Field(default="{}", description="JSON object with the tool arguments")

    def to_openai(self) -> dict[str, Any]:
        """Serialize in the chat completions `tool_calls` format."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ChatMessage(BaseModel):
    """A single message of the conversation."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str | None = None
    tool_calls: list[ToolCallRequest] | None = None
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: str | None,
        tool_calls: list[ToolCallRequest] | None = None,
    ) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "ChatMessage":
        return cls(role=MessageRole.TOOL, content=content, tool_call_id=tool_call_id)

    def to_openai(self) -> dict[str, Any]:
        """Serialize as a chat completions request message."""
        message: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [call.to_openai() for call in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        return message

    def describe(self) -> str:
        """Text used when the message is recorded as a span input."""
        if self.content is not None:
            return self.content
        return self.model_dump_json(exclude_none=True)


class RawPrompt(BaseModel):
    """A bare user prompt."""

    model_config = ConfigDict(frozen=True, strict=True)

    text: str


class Conversation(BaseModel):
    """An already-built ordered message sequence."""

    model_config = ConfigDict(frozen=True)

    messages: list[ChatMessage]


AgentInput = RawPrompt | Conversation


@singledispatch
def to_messages(agent_input: object) -> list[ChatMessage]:
    """Convert agent input into a message list (order preserved)."""
    raise InvalidAgentInputError(
        f"Agent input must be a RawPrompt or a Conversation, got {type(agent_input).__name__}",
    )


@to_messages.register
def _(agent_input: RawPrompt) -> list[ChatMessage]:
    return [ChatMessage.user(agent_input.text)]


@to_messages.register
def _(agent_input: Conversation) -> list[ChatMessage]:
    return list(agent_input.messages)


def format_messages(
    agent_input: AgentInput,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
) -> list[ChatMessage]:
    """
    Normalize agent input into the message sequence for the completion endpoint.

    Guarantees:
        - a RawPrompt becomes exactly one user message
        - if no system message exists anywhere, the system prompt is prepended
          (never inserted mid-sequence)
        - the relative order of all other messages is preserved

    Raises:
        InvalidAgentInputError: If the input is neither a RawPrompt nor a Conversation.

    Example:
        >>> [m.role.value for m in format_messages(RawPrompt(text="Hi"))]
        ['system', 'user']
    """
    messages = to_messages(agent_input)

    if not any(message.role is MessageRole.SYSTEM for message in messages):
        logger.debug("Adding system message")
        messages.insert(0, ChatMessage.system(system_prompt))

    return messages


def merge_history(messages: list[ChatMessage], history: list[ChatMessage]) -> list[ChatMessage]:
    """
    Insert previously persisted messages into a formatted message sequence.

    History goes after the leading system messages and before everything
    else, so a request still starts with its system directive. System
    messages found in the history are dropped.

    Example:
        >>> messages = [ChatMessage.system("Be terse."), ChatMessage.user("Hi")]
        >>> history = [ChatMessage.user("Sales?"), ChatMessage.assistant("Flat.")]
        >>> [m.role.value for m in merge_history(messages, history)]
        ['system', 'user', 'assistant', 'user']
    """
    split = 0
    while split < len(messages) and messages[split].role is MessageRole.SYSTEM:
        split += 1
    prior = [message for message in history if message.role is not MessageRole.SYSTEM]
    return [*messages[:split], *prior, *messages[split:]]


def last_user_content(messages: list[ChatMessage]) -> str | None:
    """Content of the most recent user message, if any."""
    for message in reversed(messages):
        if message.role is MessageRole.USER:
            return message.content
    return None
