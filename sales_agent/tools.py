"""
Tool registry and dispatcher.

Tools form a closed set known when the agent is built. Each tool owns a
Pydantic model describing its arguments; the dispatcher deserializes the raw
JSON arguments of a tool call into that model, executes the tool inside a
TOOL span and turns the outcome into a plain-text ToolResult.

Error handling follows two categories:
- fatal (raised): unknown tool names and malformed arguments
- recoverable (folded into the result text): failures while the tool executes
"""

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from openinference.semconv.trace import SpanAttributes
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .conversation import ChatMessage, ToolCallRequest
from .errors import ToolArgumentsError, ToolCatalogError, ToolExecutionError, UnknownToolError
from .span_tree import RunContext, SpanKind, SpanRole, SpanTreeManager
from .tool_catalog import ToolDefinition

logger = logging.getLogger(__name__)


class ToolResult(BaseModel):
    """Result from a tool execution."""

    tool_call_id: str = Field(description="Id of the tool call this result answers")
    tool_name: str = Field(description="Name of the tool that was executed")
    content: str = Field(description="Plain-text result (or failure description)")
    success: bool = Field(description="Whether execution was successful")
    error: str | None = Field(default=None, description="Error message if execution failed")
    execution_time_ms: float = Field(description="Execution time in milliseconds")

    model_config = ConfigDict(extra="forbid")

    def to_message(self) -> ChatMessage:
        """Tool message appended to the conversation."""
        return ChatMessage.tool(self.tool_call_id, self.content)


class Tool(BaseModel):
    """
    A named capability the completion endpoint can invoke.

    The function receives the validated argument model and the RunContext of the
    current run (so it can parent its own spans), and may be sync or async.
    """

    name: str = Field(description="Unique name for the tool")
    description: str = Field(description="Human-readable description of what the tool does")
    args_model: type[BaseModel] = Field(description="Model the JSON arguments are validated into")
    function: Callable = Field(exclude=True, description="The underlying callable function")

    model_config = ConfigDict(
        extra="forbid",
        arbitrary_types_allowed=True,  # Allow Callable type
    )

    @property
    def parameter_names(self) -> set[str]:
        """Argument names as they appear in JSON (aliases included)."""
        return {
            field.alias or field_name
            for field_name, field in self.args_model.model_fields.items()
        }

    async def __call__(self, arguments: BaseModel, run: RunContext) -> str:
        """
        Execute the tool and coerce its output to text.

        Raises:
            ToolExecutionError: For failures the tool reports itself.
            Exception: Anything else the underlying function raises.
        """
        if inspect.iscoroutinefunction(self.function):
            result = await self.function(arguments, run)
        else:
            # Run sync function in thread pool to avoid blocking
            result = await asyncio.to_thread(self.function, arguments, run)
        return coerce_to_text(result)


def coerce_to_text(result: Any) -> str:
    """Convert native tool output to the plain text carried by the conversation."""
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    if isinstance(result, (dict, list)):
        return json.dumps(result, default=str)
    return str(result)


class ToolDispatcher:
    """Maps tool calls to registered tools and executes them with tracing."""

    def __init__(self, tools: list[Tool], spans: SpanTreeManager):
        """
        Initialize the dispatcher.

        Args:
            tools: The closed set of tools the agent can execute.
            spans: Span tree manager used to record TOOL spans.

        Raises:
            ValueError: If two tools share a name.
        """
        self.tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self.tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self.tools[tool.name] = tool
        self.spans = spans

    def bind_catalog(self, definitions: list[ToolDefinition]) -> list[dict[str, Any]]:
        """
        Check the catalog against the registry and build the endpoint `tools` parameter.

        The catalog must describe exactly the registered tools, and each definition
        must declare exactly the parameters the tool's argument model accepts.

        Returns:
            Tool parameters in the chat completions format.

        Raises:
            ToolCatalogError: On any mismatch between catalog and registry.
        """
        catalog_names = [definition.name for definition in definitions]
        duplicates = sorted({name for name in catalog_names if catalog_names.count(name) > 1})
        if duplicates:
            raise ToolCatalogError(f"Duplicate tools in catalog: {', '.join(duplicates)}")

        missing = sorted(set(self.tools) - set(catalog_names))
        unexpected = sorted(set(catalog_names) - set(self.tools))
        if missing or unexpected:
            raise ToolCatalogError(
                "Tool catalog does not match the registered tools",
                details={"missing_from_catalog": missing, "not_implemented": unexpected},
            )

        tool_params = []
        for definition in definitions:
            logger.debug(f"Converting tool config for function '{definition.name}' to param")
            tool = self.tools[definition.name]
            parameters = definition.function.parameters
            declared = set(parameters.properties)

            if declared != tool.parameter_names:
                raise ToolCatalogError(
                    f"Catalog parameters for '{definition.name}' do not match the tool",
                    details={
                        "catalog": sorted(declared),
                        "tool": sorted(tool.parameter_names),
                    },
                )
            unknown_required = sorted(set(parameters.required) - declared)
            if unknown_required:
                raise ToolCatalogError(
                    f"Catalog for '{definition.name}' requires undeclared parameters: "
                    f"{', '.join(unknown_required)}",
                )

            properties = {}
            for name, prop in parameters.properties.items():
                properties[name] = {"type": prop.type}
                if prop.description:
                    properties[name]["description"] = prop.description

            tool_params.append({
                "type": definition.type,
                "function": {
                    "name": definition.name,
                    "description": definition.function.description,
                    "parameters": {
                        "type": parameters.type,
                        "properties": properties,
                        "required": list(parameters.required),
                    },
                },
            })

        return tool_params

    def get_tool(self, name: str) -> Tool:
        """
        Look up a tool by exact name.

        Raises:
            UnknownToolError: If no tool with that name is registered.
        """
        tool = self.tools.get(name)
        if tool is None:
            raise UnknownToolError(
                f"Tool '{name}' not found",
                details={"available_tools": sorted(self.tools)},
            )
        return tool

    def parse_arguments(self, call: ToolCallRequest) -> BaseModel:
        """
        Deserialize raw tool-call arguments into the tool's argument model.

        Raises:
            UnknownToolError: If the tool is not registered.
            ToolArgumentsError: If the arguments are not valid JSON for the model.
        """
        tool = self.get_tool(call.name)
        try:
            return tool.args_model.model_validate_json(call.arguments)
        except ValidationError as e:
            raise ToolArgumentsError(
                f"Invalid arguments for tool '{call.name}': {e}",
                details={"tool_call_id": call.id, "arguments": call.arguments},
            ) from e

    async def dispatch(self, call: ToolCallRequest, run: RunContext) -> ToolResult:
        """
        Execute a single tool call inside a TOOL span.

        The span is a child of the run's tool-handling span and is recorded in the
        run's tool slot, so tool implementations can parent their own sub-calls.

        Raises:
            UnknownToolError: If the tool is not registered.
            ToolArgumentsError: If the arguments cannot be deserialized.
        """
        with self.spans.open_span(
            call.name,
            SpanKind.TOOL,
            run,
            role=SpanRole.TOOL,
            parent_role=SpanRole.TOOL_HANDLING,
            attributes={
                SpanAttributes.TOOL_NAME: call.name,
                SpanAttributes.TOOL_PARAMETERS: call.arguments,
                SpanAttributes.INPUT_VALUE: call.arguments,
            },
        ) as tool_span:
            logger.info(f"Processing tool call '{call.id}' for function '{call.name}'")
            tool = self.get_tool(call.name)
            arguments = self.parse_arguments(call)

            start_time = time.time()
            error = None
            try:
                content = await tool(arguments, run)
            except ToolExecutionError as e:
                error = e.message
            except Exception as e:
                error = f"Tool '{call.name}' failed: {e!s}"
            execution_time = (time.time() - start_time) * 1000

            if error is not None:
                logger.warning(f"Tool '{call.name}' failed: {error}")
                self.spans.set_attributes(tool_span, {"tool.success": False, "tool.error": error})
                self.spans.set_output(tool_span, error)
                self.spans.set_status_error(tool_span, error)
                return ToolResult(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    content=error,
                    success=False,
                    error=error,
                    execution_time_ms=execution_time,
                )

            logger.debug(f"Tool '{call.name}' executed successfully in {execution_time:.2f}ms")
            self.spans.set_attribute(tool_span, "tool.success", True)
            self.spans.set_output(tool_span, content)
            return ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                content=content,
                success=True,
                execution_time_ms=execution_time,
            )

    async def dispatch_all(
        self,
        calls: list[ToolCallRequest],
        run: RunContext,
    ) -> list[ToolResult]:
        """Execute tool calls strictly in the order received."""
        results = []
        for call in calls:
            results.append(await self.dispatch(call, run))
        return results
