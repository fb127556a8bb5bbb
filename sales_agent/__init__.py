"""Traced tool-calling agent for the store sales dataset."""

from sales_agent.agent import AgentRunResult, RouterState, ToolCallingAgent
from sales_agent.conversation import ChatMessage, Conversation, RawPrompt, format_messages
from sales_agent.span_tree import RunContext, SpanKind, SpanRole, SpanTreeManager
from sales_agent.tools import Tool, ToolDispatcher, ToolResult

__all__ = [
    "AgentRunResult",
    "ChatMessage",
    "Conversation",
    "RawPrompt",
    "RouterState",
    "RunContext",
    "SpanKind",
    "SpanRole",
    "SpanTreeManager",
    "Tool",
    "ToolCallingAgent",
    "ToolDispatcher",
    "ToolResult",
    "format_messages",
]
