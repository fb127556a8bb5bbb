"""
Completion endpoint client.

Wraps AsyncOpenAI chat completions and records each request as an LLM-kind
span in the agent's span tree. Trace context of the LLM span is propagated to
the endpoint using OpenTelemetry's W3C TraceContext standard:
  carrier: dict[str, str] = {}
  propagate.inject(carrier, context=llm_context)
  openai_client.chat.completions.create(..., extra_headers=carrier)
so proxy-side spans (e.g. LiteLLM) are correlated with the agent's trace.
"""

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI
from opentelemetry import propagate, trace
from openinference.semconv.trace import SpanAttributes
from pydantic import BaseModel

from .conversation import ChatMessage, ToolCallRequest
from .errors import CompletionError
from .span_tree import RunContext, SpanKind, SpanRole, SpanTreeManager

logger = logging.getLogger(__name__)


class Usage(BaseModel):
    """Token usage counters reported by the completion endpoint."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class CompletionResult(BaseModel):
    """Normalized completion response: plain text or a list of tool calls."""

    message: ChatMessage
    model: str
    usage: Usage | None = None
    finish_reason: str | None = None

    @property
    def content(self) -> str:
        return self.message.content or ""

    @property
    def tool_calls(self) -> list[ToolCallRequest]:
        return list(self.message.tool_calls or [])

    def describe(self) -> str:
        """Text recorded as span output: the answer, or the raw JSON list of tool calls."""
        if self.tool_calls:
            return "[" + ",\n".join(call.model_dump_json() for call in self.tool_calls) + "]"
        return self.content


class CompletionClient:
    """
    Sends message lists to the completion endpoint.

    One client is shared by the router loop and by tool implementations; each
    caller names the span role its LLM span should be parented under.
    """

    def __init__(
        self,
        openai_client: AsyncOpenAI,
        spans: SpanTreeManager,
        model: str,
        max_output_tokens: int = 1000,
    ):
        """
        Initialize the completion client.

        Args:
            openai_client: Shared AsyncOpenAI client. Its max_retries setting is the
                only retry policy applied to completion requests.
            spans: Span tree manager used to record LLM spans.
            model: Model identifier sent with every request.
            max_output_tokens: Default maximum output token budget per request.
        """
        self.openai_client = openai_client
        self.spans = spans
        self.model = model
        self.max_output_tokens = max_output_tokens

    async def complete(
        self,
        messages: list[ChatMessage],
        run: RunContext,
        *,
        parent_role: SpanRole,
        tools: list[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
        max_tokens: int | None = None,
    ) -> CompletionResult:
        """
        Request the next completion.

        Args:
            messages: Ordered conversation to send.
            run: Context of the current run.
            parent_role: Slot whose span becomes the parent of the LLM span.
            tools: Optional tool catalog in the chat completions `tools` format.
            response_format: Optional structured-output format.
            max_tokens: Output budget override.

        Returns:
            CompletionResult with the assistant message and usage counters.

        Raises:
            CompletionError: If the endpoint fails or returns no choices.
        """
        max_tokens = max_tokens or self.max_output_tokens
        request: dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_openai() for message in messages],
            "max_tokens": max_tokens,
        }
        if tools:
            request["tools"] = tools
        if response_format:
            request["response_format"] = response_format

        with self.spans.open_span(
            "ChatCompletion",
            SpanKind.LLM,
            run,
            parent_role=parent_role,
            attributes={
                SpanAttributes.LLM_PROVIDER: "openai",
                SpanAttributes.LLM_SYSTEM: "openai",
                SpanAttributes.LLM_MODEL_NAME: self.model,
                SpanAttributes.LLM_INVOCATION_PARAMETERS: json.dumps(
                    {"model": self.model, "max_tokens": max_tokens},
                ),
            },
        ) as llm_span:
            if messages:
                self.spans.set_input(llm_span, messages[-1].describe())

            carrier: dict[str, str] = {}
            propagate.inject(carrier, context=trace.set_span_in_context(llm_span))

            try:
                response = await self.openai_client.chat.completions.create(
                    **request,
                    extra_headers=carrier,
                )
            except openai.APIStatusError as status_error:
                logger.error(f"Completion endpoint error: {status_error}")
                raise CompletionError(
                    f"Completion endpoint error: {status_error.status_code} {status_error.response.text}",  # noqa: E501
                    details={
                        "http_status": status_error.status_code,
                        "response": status_error.response.text,
                    },
                ) from status_error
            except openai.APIError as api_error:
                logger.error(f"Completion request failed: {api_error}")
                raise CompletionError(f"Completion request failed: {api_error}") from api_error

            if not response.choices:
                raise CompletionError("Completion endpoint returned no choices")

            result = self._to_result(response)
            if result.usage:
                self.spans.set_token_counts(
                    llm_span,
                    result.usage.prompt_tokens,
                    result.usage.completion_tokens,
                    result.usage.total_tokens,
                )
            self.spans.set_output(llm_span, result.describe())
            return result

    @staticmethod
    def _to_result(response: Any) -> CompletionResult:
        choice = response.choices[0]
        tool_calls = [
            ToolCallRequest(
                id=tool_call.id,
                name=tool_call.function.name,
                arguments=tool_call.function.arguments or "{}",
            )
            for tool_call in (choice.message.tool_calls or [])
            if getattr(tool_call, "function", None) is not None
        ]

        usage = None
        if response.usage:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return CompletionResult(
            message=ChatMessage.assistant(choice.message.content, tool_calls),
            model=response.model,
            usage=usage,
            finish_reason=choice.finish_reason,
        )
