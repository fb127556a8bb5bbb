"""
Tool-calling agent: the router loop.

The loop is a small state machine:

    AWAITING_ROUTER_DECISION ──(tool calls)──► TOOL_CALLS_PENDING
            ▲                                        │
            └──────────(results appended)────────────┘
    AWAITING_ROUTER_DECISION ──(plain answer)──► DONE

Each run gets its own RunContext, so the ambient parent slots used by the
dispatcher and tool implementations are never shared between runs.

Resulting span tree for one tool iteration with two calls:

    AgentRun (AGENT)
    ├─ RouterCall (CHAIN)
    │  ├─ ChatCompletion (LLM)
    │  └─ HandleToolCalls (CHAIN)
    │     ├─ <tool 1> (TOOL)
    │     └─ <tool 2> (TOOL)
    └─ RouterCall (CHAIN)
       └─ ChatCompletion (LLM)

Error handling: completion failures, malformed tool arguments and unknown tools
abort the run (every open span is marked ERROR and closed). Tool execution
failures are folded into the conversation by the dispatcher. A deadline
expiring cancels the run, closes every open span and raises RunTimeoutError.
"""

import asyncio
import logging
from enum import Enum

from openinference.semconv.trace import SpanAttributes
from pydantic import BaseModel, Field

from .completion import CompletionClient, CompletionResult, Usage
from .config import DEFAULT_SYSTEM_PROMPT
from .conversation import (
    AgentInput,
    ChatMessage,
    RawPrompt,
    ToolCallRequest,
    format_messages,
    last_user_content,
    merge_history,
)
from .errors import MaxIterationsExceededError, RunTimeoutError
from .history import ConversationHistory, HistoryStore, persistable_messages
from .span_tree import RunContext, SpanKind, SpanRole, SpanTreeManager
from .tool_catalog import ToolDefinition
from .tools import ToolDispatcher, ToolResult

logger = logging.getLogger(__name__)


class RouterState(str, Enum):
    """States of the router loop."""

    AWAITING_ROUTER_DECISION = "awaiting_router_decision"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    DONE = "done"


class AgentRunResult(BaseModel):
    """Outcome of a completed run."""

    answer: str = Field(description="Final answer returned by the model")
    messages: list[ChatMessage] = Field(description="Full transcript, including tool messages")
    iterations: int = Field(description="Number of router calls made")
    state: RouterState = Field(default=RouterState.DONE)
    usage: Usage = Field(default_factory=Usage, description="Token usage summed over router calls")
    run_id: str


class ToolCallingAgent:
    """
    Runs the router loop against the completion endpoint.

    Example:
        >>> agent = ToolCallingAgent(completion_client, dispatcher, load_tool_catalog())
        >>> result = await agent.ask("What were sales for store 7 last week?")
        >>> print(result.answer)
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        dispatcher: ToolDispatcher,
        tool_catalog: list[ToolDefinition],
        spans: SpanTreeManager | None = None,
        *,
        max_iterations: int | None = 10,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_store: HistoryStore | None = None,
    ):
        """
        Initialize the agent.

        Args:
            completion_client: Client used for router calls.
            dispatcher: Dispatcher holding the closed tool set.
            tool_catalog: Tool definitions offered to the completion endpoint.
            spans: Span tree manager. Defaults to the completion client's.
            max_iterations: Maximum router calls per run. None removes the cap.
            system_prompt: System directive used when the input has none.
            history_store: Optional store the conversation is loaded from and saved to.

        Raises:
            ToolCatalogError: If the catalog does not match the dispatcher's tools.
            ValueError: If max_iterations is less than 1.
        """
        if max_iterations is not None and max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self.completion_client = completion_client
        self.dispatcher = dispatcher
        self.spans = spans or completion_client.spans
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt
        self.history_store = history_store
        self.tool_params = dispatcher.bind_catalog(tool_catalog)

    async def ask(
        self,
        prompt: str,
        *,
        timeout: float | None = None,
        restart_history: bool = False,
    ) -> AgentRunResult:
        """Run the agent on a single user prompt."""
        return await self.run(
            RawPrompt(text=prompt),
            timeout=timeout,
            restart_history=restart_history,
        )

    async def run(
        self,
        agent_input: AgentInput,
        *,
        timeout: float | None = None,
        restart_history: bool = False,
    ) -> AgentRunResult:
        """
        Run the router loop until the model returns a plain answer.

        Persisted history is inserted after the leading system messages of the
        formatted input.

        Args:
            agent_input: A RawPrompt or a Conversation.
            timeout: Deadline in seconds for the whole run. None means no deadline.
            restart_history:
                Start a new conversation instead of loading the stored one. The
                stored history is replaced when the run succeeds.

        Returns:
            AgentRunResult with the final answer and the full transcript.

        Raises:
            InvalidAgentInputError: If the input is neither a RawPrompt nor a Conversation.
            CompletionError: If a router call fails.
            UnknownToolError: If the model requests a tool that is not registered.
            ToolArgumentsError: If tool-call arguments cannot be deserialized.
            MaxIterationsExceededError: If the iteration cap is reached.
            RunTimeoutError: If the deadline expires.
        """
        messages = format_messages(agent_input, self.system_prompt)
        if self.history_store is not None and restart_history:
            logger.info("Starting a new conversation")
        elif self.history_store is not None:
            history = await self.history_store.get()
            if history.messages:
                messages = merge_history(messages, history.messages)

        run = RunContext()
        logger.info(f"Starting agent run {run.run_id} with {len(messages)} messages")

        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                result = await self._run(messages, run)
        except TimeoutError as e:
            if not deadline.expired():
                raise
            logger.error(f"Agent run {run.run_id} exceeded its {timeout}s deadline")
            raise RunTimeoutError(
                f"Agent run exceeded its {timeout}s deadline",
                details={"run_id": run.run_id},
            ) from e

        if self.history_store is not None:
            await self.history_store.put(
                ConversationHistory(messages=persistable_messages(result.messages)),
            )

        logger.info(f"Agent run {run.run_id} finished after {result.iterations} iterations")
        return result

    async def _run(self, messages: list[ChatMessage], run: RunContext) -> AgentRunResult:
        with self.spans.open_span(
            "AgentRun",
            SpanKind.AGENT,
            run,
            role=SpanRole.RUN,
            attributes={SpanAttributes.LLM_MODEL_NAME: self.completion_client.model},
        ) as run_span:
            self.spans.set_input(run_span, last_user_content(messages) or "")

            state = RouterState.AWAITING_ROUTER_DECISION
            iterations = 0
            usage = Usage()
            answer = ""

            while state is not RouterState.DONE:
                if self.max_iterations is not None and iterations >= self.max_iterations:
                    raise MaxIterationsExceededError(
                        f"No final answer after {iterations} router calls",
                        details={"run_id": run.run_id, "max_iterations": self.max_iterations},
                    )

                iterations += 1
                completion = await self._route(messages, run)
                if completion.usage:
                    usage = usage + completion.usage
                messages.append(completion.message)

                if not completion.tool_calls:
                    answer = completion.content
                    state = RouterState.DONE
                    logger.debug(f"Run {run.run_id}: final answer after {iterations} iterations")
                    continue

                state = RouterState.TOOL_CALLS_PENDING
                logger.debug(
                    f"Run {run.run_id}: {len(completion.tool_calls)} tool calls pending",
                )
                results = await self._handle_tool_calls(completion.tool_calls, run)
                messages.extend(result.to_message() for result in results)
                state = RouterState.AWAITING_ROUTER_DECISION

            self.spans.set_output(run_span, answer)
            return AgentRunResult(
                answer=answer,
                messages=messages,
                iterations=iterations,
                state=state,
                usage=usage,
                run_id=run.run_id,
            )

    async def _route(self, messages: list[ChatMessage], run: RunContext) -> CompletionResult:
        """One router call: ask the endpoint for the next step."""
        with self.spans.open_span(
            "RouterCall",
            SpanKind.CHAIN,
            run,
            role=SpanRole.ROUTER,
            parent_role=SpanRole.RUN,
            attributes={SpanAttributes.LLM_MODEL_NAME: self.completion_client.model},
        ) as router_span:
            # Only the most recent message is recorded to bound attribute size
            self.spans.set_input(router_span, messages[-1].describe())

            completion = await self.completion_client.complete(
                messages,
                run,
                parent_role=SpanRole.ROUTER,
                tools=self.tool_params,
            )

            self.spans.set_output(router_span, completion.describe())
            if completion.usage:
                self.spans.set_token_counts(
                    router_span,
                    completion.usage.prompt_tokens,
                    completion.usage.completion_tokens,
                    completion.usage.total_tokens,
                )
            return completion

    async def _handle_tool_calls(
        self,
        calls: list[ToolCallRequest],
        run: RunContext,
    ) -> list[ToolResult]:
        """Execute requested tool calls in order under a HandleToolCalls span."""
        with self.spans.open_span(
            "HandleToolCalls",
            SpanKind.CHAIN,
            run,
            role=SpanRole.TOOL_HANDLING,
            parent_role=SpanRole.ROUTER,
        ) as handle_span:
            self.spans.set_input(handle_span, [call.model_dump_json() for call in calls])
            results = await self.dispatcher.dispatch_all(calls, run)
            self.spans.set_output(handle_span, [result.content for result in results])
            return results
