"""
Wiring of the agent's collaborators from Settings.

Clients and stores are created here once and handed to the agent
explicitly; nothing below reads settings at import time.
"""

import logging

import httpx
from openai import AsyncOpenAI

from .agent import ToolCallingAgent
from .completion import CompletionClient
from .config import Settings
from .history import JsonHistoryStore
from .sales_tools import DuckDBSalesStore, SalesDataStore, SalesTools
from .span_tree import SpanTreeManager
from .tool_catalog import load_tool_catalog
from .tools import ToolDispatcher

logger = logging.getLogger(__name__)


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """
    Create the HTTP client used for completion requests.

    Example:
        >>> client = create_http_client(Settings())
        >>> # 60s timeout for every phase of a request
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.completion_timeout),
        limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
    )


def create_openai_client(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create the AsyncOpenAI client; its max_retries is the only retry policy."""
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        max_retries=settings.completion_max_retries,
        timeout=settings.completion_timeout,
        http_client=http_client,
    )


def create_agent(
    settings: Settings,
    openai_client: AsyncOpenAI,
    *,
    spans: SpanTreeManager | None = None,
    store: SalesDataStore | None = None,
    use_history: bool = True,
) -> ToolCallingAgent:
    """
    Build a ToolCallingAgent with the sales tools.

    Raises:
        ToolCatalogError: If the configured catalog does not match the sales tools.
    """
    spans = spans or SpanTreeManager()
    completions = CompletionClient(
        openai_client,
        spans,
        model=settings.agent_model,
        max_output_tokens=settings.max_output_tokens,
    )
    store = store or DuckDBSalesStore(
        settings.sales_data_path,
        settings.sales_database_path,
        settings.sales_table_name,
    )
    dispatcher = ToolDispatcher(SalesTools(completions, store).as_tools(), spans)

    return ToolCallingAgent(
        completions,
        dispatcher,
        load_tool_catalog(settings.tools_config_path),
        spans,
        max_iterations=settings.max_router_iterations,
        system_prompt=settings.system_prompt,
        history_store=JsonHistoryStore(settings.history_path) if use_history else None,
    )


class AgentContainer:
    """
    Owns the agent and the clients it depends on.

    Usage:
        async with AgentContainer(settings) as container:
            result = await container.agent.ask("What were sales for store 7?")
    """

    def __init__(self, settings: Settings, *, use_history: bool = True):
        self.settings = settings
        self.use_history = use_history
        self.http_client: httpx.AsyncClient | None = None
        self.openai_client: AsyncOpenAI | None = None
        self.agent: ToolCallingAgent | None = None

    async def initialize(self) -> None:
        """Create clients and the agent."""
        self.http_client = create_http_client(self.settings)
        self.openai_client = create_openai_client(self.settings, self.http_client)
        self.agent = create_agent(
            self.settings,
            self.openai_client,
            use_history=self.use_history,
        )
        logger.info(f"Agent initialized with model '{self.settings.agent_model}'")

    async def cleanup(self) -> None:
        """Close connections."""
        if self.openai_client:
            await self.openai_client.close()
        if self.http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "AgentContainer":
        try:
            await self.initialize()
        except BaseException:
            await self.cleanup()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):  # noqa: ANN001
        await self.cleanup()
