"""
Exception hierarchy for the sales agent.

Fatal errors (transport failures, malformed tool arguments, unknown tools,
catalog mismatches, invalid input) abort the run and reach the caller.
ToolExecutionError is the only recoverable kind: the dispatcher folds it into
the conversation as ordinary tool output.
"""

from typing import Any


class AgentError(Exception):
    """Base class for every error raised by the agent."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CompletionError(AgentError):
    """Raised when the completion endpoint fails (network or API-level error)."""


class ToolArgumentsError(AgentError):
    """Raised when tool-call arguments cannot be deserialized for the named tool."""


class UnknownToolError(AgentError):
    """Raised when the completion endpoint requests a tool absent from the registry."""


class ToolCatalogError(AgentError):
    """Raised when the tool catalog cannot be loaded or does not match the registry."""


class ToolExecutionError(AgentError):
    """
    Raised by tool implementations for recoverable failures.

    The message becomes the tool's result text so the model can see the
    failure and adapt.
    """


class InvalidAgentInputError(AgentError, TypeError):
    """Raised when the agent input is neither a raw prompt nor a conversation."""


class MaxIterationsExceededError(AgentError):
    """Raised when the router loop reaches its iteration cap without a final answer."""


class RunTimeoutError(AgentError):
    """Raised when a run exceeds its caller-supplied deadline."""
