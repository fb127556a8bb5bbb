"""
Span tree management for the agent's call tree.

Spans are created with explicit parent contexts instead of OpenTelemetry's
implicit "current span", so the tree stays correct across call sites that do
not share a control-flow scope (router loop, tool dispatch, tool sub-calls).

Call sites that need an ambient parent read it from a RunContext: one slot per
structural role (run, router, tool handling, tool), updated right after a span
of that role is opened. A RunContext belongs to a single run, so concurrent
runs never share slots.

    AgentRun (AGENT)                      slot: run
    └─ RouterCall (CHAIN)                 slot: router
       ├─ ChatCompletion (LLM)
       └─ HandleToolCalls (CHAIN)         slot: tool_handling
          └─ <tool name> (TOOL)           slot: tool
             └─ ChatCompletion (LLM)
"""

import asyncio
import logging
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import Status, StatusCode
from openinference.semconv.trace import OpenInferenceSpanKindValues, SpanAttributes

logger = logging.getLogger(__name__)

TRACER_NAME = "sales_agent"

AttributeValue = str | list[str] | bool | int


class SpanKind(str, Enum):
    """OpenInference span kinds used by the agent."""

    AGENT = "agent"
    CHAIN = "chain"
    TOOL = "tool"
    LLM = "llm"
    UNKNOWN = "unknown"

    @property
    def openinference_value(self) -> str:
        """Uppercase value expected by OpenInference backends (e.g. 'AGENT')."""
        return OpenInferenceSpanKindValues[self.name].value


class SpanRole(str, Enum):
    """Structural roles that have an ambient-parent slot in a RunContext."""

    RUN = "run"
    ROUTER = "router"
    TOOL_HANDLING = "tool_handling"
    TOOL = "tool"


@dataclass
class RunContext:
    """
    Per-run handle carrying the most recently opened span context of each role.

    Created at run start by the router loop and discarded at run end. Slot
    contents are undefined once the run has finished.
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    slots: dict[SpanRole, Context] = field(default_factory=dict)

    def record(self, role: SpanRole, ctx: Context) -> None:
        """Store the context of a span that was just opened for the given role."""
        self.slots[role] = ctx

    def parent(self, role: SpanRole | None) -> Context | None:
        """Return the context recorded for a role, or None for a new root."""
        if role is None:
            return None
        return self.slots.get(role)


def format_span_id(span: trace.Span) -> str:
    """Hex span id used in logs and status messages."""
    return trace.format_span_id(span.get_span_context().span_id)


def _is_supported_value(value: object) -> bool:
    if isinstance(value, (str, bool, int)):
        return True
    if isinstance(value, list):
        return all(isinstance(item, str) for item in value)
    return False


def _status_is_unset(span: trace.Span) -> bool:
    status = getattr(span, "status", None)
    return status is None or status.status_code is StatusCode.UNSET


class SpanTreeManager:
    """
    Creates, annotates and ends spans tagged with an OpenInference span kind.

    Example:
        >>> spans = SpanTreeManager()
        >>> run = RunContext()
        >>> with spans.open_span("AgentRun", SpanKind.AGENT, run, role=SpanRole.RUN) as span:
        ...     spans.set_input(span, "What were sales for store 7?")
    """

    def __init__(self, tracer: trace.Tracer | None = None):
        """
        Initialize the manager.

        Args:
            tracer: Tracer to create spans with. Defaults to the tracer of the
                globally registered provider (see sales_agent.tracing).
        """
        self._tracer = tracer or trace.get_tracer(TRACER_NAME)

    def start_span(
        self,
        name: str,
        kind: SpanKind,
        parent: Context | None = None,
        attributes: Mapping[str, object] | None = None,
    ) -> tuple[Context, trace.Span]:
        """
        Start a span tagged with a span kind.

        Args:
            name: Span name.
            kind: OpenInference span kind, fixed for the span's lifetime.
            parent: Parent context. None starts a new root, regardless of any
                span that happens to be current.
            attributes: Optional initial attributes (same type rules as set_attribute).

        Returns:
            Tuple of the child context (to hand to nested operations) and the span.
        """
        parent_context = parent if parent is not None else Context()
        span = self._tracer.start_span(
            name,
            context=parent_context,
            kind=trace.SpanKind.INTERNAL,
            attributes={SpanAttributes.OPENINFERENCE_SPAN_KIND: kind.openinference_value},
        )
        if attributes:
            self.set_attributes(span, attributes)

        logger.debug(
            f"Starting '{name}' span with kind '{kind.value}' (span id {format_span_id(span)})",
        )
        return trace.set_span_in_context(span, parent_context), span

    def end_span(self, span: trace.Span) -> None:
        """End a span."""
        logger.debug(f"Ending span {format_span_id(span)}")
        span.end()

    @contextmanager
    def open_span(
        self,
        name: str,
        kind: SpanKind,
        run: RunContext,
        *,
        role: SpanRole | None = None,
        parent_role: SpanRole | None = None,
        attributes: Mapping[str, object] | None = None,
    ) -> Iterator[trace.Span]:
        """
        Open a span for the duration of a block and always end it exactly once.

        The span is parented under the slot for parent_role (a new root when
        parent_role is None) and, when role is given, recorded in that slot.
        Exceptions and cancellations mark the span ERROR before propagating.
        A clean exit marks it OK unless a status was already set.
        """
        parent = run.parent(parent_role)
        if parent_role is not None and parent is None:
            logger.warning(
                f"No '{parent_role.value}' span recorded for run {run.run_id}; "
                f"'{name}' starts a new trace",
            )

        ctx, span = self.start_span(name, kind, parent, attributes)
        if role is not None:
            run.record(role, ctx)

        try:
            yield span
        except asyncio.CancelledError:
            self.set_attribute(span, "cancelled", True)
            self.set_status_error(span, "Cancelled")
            raise
        except Exception as e:
            span.record_exception(e)
            self.set_status_error(span, f"{type(e).__name__}: {e}")
            raise
        else:
            if _status_is_unset(span):
                self.set_status_ok(span)
        finally:
            self.end_span(span)

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def set_attribute(self, span: trace.Span, key: str, value: object) -> bool:
        """
        Set a single attribute if its value is a string, string list, bool or int.

        Returns:
            True if the attribute was set, False if it was ignored.
        """
        if not _is_supported_value(value):
            logger.warning(
                f"Value for key '{key}' is not an expected type ({type(value).__name__}). Ignoring",
            )
            return False
        if getattr(span, "end_time", None) is not None:
            logger.warning(f"Span {format_span_id(span)} has ended; ignoring attribute '{key}'")
            return False

        span.set_attribute(key, value)
        return True

    def set_attributes(self, span: trace.Span, attributes: Mapping[str, object]) -> None:
        """Set several attributes, skipping values of unsupported types."""
        for key, value in attributes.items():
            self.set_attribute(span, key, value)

    def set_input(self, span: trace.Span, value: AttributeValue) -> None:
        self.set_attribute(span, SpanAttributes.INPUT_VALUE, value)

    def set_output(self, span: trace.Span, value: AttributeValue) -> None:
        self.set_attribute(span, SpanAttributes.OUTPUT_VALUE, value)

    def set_model(self, span: trace.Span, model: str) -> None:
        self.set_attribute(span, SpanAttributes.LLM_MODEL_NAME, model)

    def set_token_counts(
        self,
        span: trace.Span,
        prompt_tokens: int,
        completion_tokens: int,
        total_tokens: int,
    ) -> None:
        """Record completion usage counters."""
        self.set_attributes(span, {
            SpanAttributes.LLM_TOKEN_COUNT_PROMPT: prompt_tokens,
            SpanAttributes.LLM_TOKEN_COUNT_COMPLETION: completion_tokens,
            SpanAttributes.LLM_TOKEN_COUNT_TOTAL: total_tokens,
        })

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def set_status_ok(self, span: trace.Span, message: str = "Successful") -> None:
        """
        Mark a span OK.

        OpenTelemetry drops descriptions on non-error statuses, so the message
        is only logged.
        """
        span.set_status(Status(StatusCode.OK))
        logger.debug(f"Span {format_span_id(span)} status: {message}")

    def set_status_error(self, span: trace.Span, message: str = "Failed") -> None:
        """Mark a span ERROR with a human-readable description."""
        span.set_status(Status(
            StatusCode.ERROR,
            f"Span ID: '{format_span_id(span)}'. Status: {message}",
        ))
