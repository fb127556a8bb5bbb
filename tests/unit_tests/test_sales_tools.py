"""Tests for the sales tools with a fake data store and a mocked completion endpoint."""

import json
from pathlib import Path

import duckdb
import pytest
import respx
from opentelemetry import trace
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from sales_agent.completion import CompletionClient
from sales_agent.conversation import ToolCallRequest
from sales_agent.errors import ToolExecutionError
from sales_agent.sales_tools import (
    CHART_CONFIG_RESPONSE_FORMAT,
    AnalyzeSalesDataArgs,
    ChartConfig,
    DuckDBSalesStore,
    GenerateVisualizationArgs,
    LookUpSalesDataArgs,
    QueryResult,
    SalesTools,
    strip_code_fence,
)
from sales_agent.span_tree import RunContext, SpanKind, SpanRole
from sales_agent.tool_catalog import load_tool_catalog
from sales_agent.tools import ToolDispatcher
from tests.fixtures.responses import (
    OPENAI_CHAT_COMPLETIONS_URL,
    create_error_response,
    create_http_response,
    request_json,
)
from tests.fixtures.stores import FakeSalesStore
from tests.fixtures.tracing import only_span, parent_id


def sent_prompt(route: respx.Route, index: int = -1) -> str:
    """User prompt of a captured completion request."""
    return request_json(route.calls[index].request)["messages"][-1]["content"]


class TestHelpers:

    @pytest.mark.parametrize(("text", "language", "expected"), [
        ("```sql\nSELECT * FROM sales\n```", "sql", "SELECT * FROM sales"),
        ("\n SELECT 1 \n", "sql", "SELECT 1"),
        ("```python\nimport matplotlib\n```\n", "python", "import matplotlib"),
        ('```json\n{"title": "x"}\n```', "json", '{"title": "x"}'),
    ])
    def test__strip_code_fence(self, text: str, language: str, expected: str):
        assert strip_code_fence(text, language) == expected

    def test__query_result__to_text(self):
        result = QueryResult(columns=["store", "sales"], rows=[(7, 120), (8, None)])
        assert result.to_text() == "store, sales\n7, 120\n8, None"

    def test__query_result__header_only(self):
        assert QueryResult(columns=["store"]).to_text() == "store"

    def test__chart_config__fallback(self):
        config = ChartConfig.fallback("Weekly sales")
        assert config.model_dump(by_alias=True) == {
            "chartType": "line",
            "xAxis": "date",
            "yAxis": "value",
            "title": "Weekly sales",
        }


class TestDuckDBSalesStore:

    @pytest.fixture
    def sales_parquet(self, tmp_path: Path) -> str:
        path = str(tmp_path / "sales.parquet")
        with duckdb.connect() as connection:
            connection.execute(
                "COPY (SELECT * FROM (VALUES "
                "(7, '2024-10-21', 1200.0::DOUBLE), (8, '2024-10-21', 900.5::DOUBLE)"
                ") AS sales(store, week, sales)) "
                f"TO '{path}' (FORMAT PARQUET)",
            )
        return path

    @pytest.fixture
    def store(self, sales_parquet: str, tmp_path: Path) -> DuckDBSalesStore:
        return DuckDBSalesStore(sales_parquet, str(tmp_path / "data.db"))

    @pytest.mark.asyncio
    async def test__columns__loads_table_from_parquet(self, store: DuckDBSalesStore):
        assert await store.columns() == ["store", "week", "sales"]

    @pytest.mark.asyncio
    async def test__query(self, store: DuckDBSalesStore):
        result = await store.query("SELECT store, sales FROM sales WHERE store = 7")
        assert result.to_text() == "store, sales\n7, 1200.0"

    @pytest.mark.asyncio
    async def test__query__reuses_loaded_table(self, store: DuckDBSalesStore, sales_parquet: str):
        await store.columns()
        Path(sales_parquet).unlink()

        result = await store.query("SELECT count(*) AS stores FROM sales")

        assert result.to_text() == "stores\n2"

    @pytest.mark.asyncio
    async def test__query__invalid_sql(self, store: DuckDBSalesStore):
        with pytest.raises(duckdb.Error):
            await store.query("SELECT nope FROM sales")

    @pytest.mark.asyncio
    async def test__query__missing_dataset(self, tmp_path: Path):
        store = DuckDBSalesStore(str(tmp_path / "missing.parquet"), str(tmp_path / "data.db"))
        with pytest.raises(duckdb.Error):
            await store.columns()

    def test__invalid_table_name(self, sales_parquet: str):
        with pytest.raises(ValueError, match="Invalid table name"):
            DuckDBSalesStore(sales_parquet, table_name="sales; DROP TABLE sales")


class TestSalesTools:

    @pytest.fixture
    def run(self, completion_client: CompletionClient) -> RunContext:
        run = RunContext()
        # Tool sub-calls are parented under the tool slot
        ctx, span = completion_client.spans.start_span("LookUpSalesData", SpanKind.TOOL)
        run.record(SpanRole.TOOL, ctx)
        yield run
        completion_client.spans.end_span(span)

    @pytest.mark.asyncio
    @respx.mock
    async def test__look_up_sales_data__runs_generated_query(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        run: RunContext,
    ):
        route = respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(
            return_value=create_http_response("```sql\nSELECT store, sales FROM sales\n```"),
        )
        tools = SalesTools(completion_client, fake_store)

        text = await tools.look_up_sales_data(LookUpSalesDataArgs(prompt="Sales for store 7?"), run)

        assert text == "store, sales\n7, 120"
        assert fake_store.queries == ["SELECT store, sales FROM sales"]
        prompt = sent_prompt(route)
        assert "Sales for store 7?" in prompt
        assert "The available columns are: store, sales" in prompt
        assert "The table name is: sales" in prompt

    @pytest.mark.asyncio
    @respx.mock
    async def test__look_up_sales_data__llm_span_is_child_of_tool(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        span_exporter: InMemorySpanExporter,
        run: RunContext,
    ):
        respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(
            return_value=create_http_response("SELECT * FROM sales"),
        )
        tools = SalesTools(completion_client, fake_store)
        tool_ctx = run.parent(SpanRole.TOOL)

        await tools.look_up_sales_data(LookUpSalesDataArgs(prompt="all"), run)

        expected_parent = trace.get_current_span(tool_ctx).get_span_context().span_id
        assert parent_id(only_span(span_exporter, "ChatCompletion")) == expected_parent

    @pytest.mark.asyncio
    @respx.mock
    async def test__look_up_sales_data__query_failure_is_recoverable_error(
        self,
        completion_client: CompletionClient,
        run: RunContext,
    ):
        respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(
            return_value=create_http_response("SELECT nope FROM sales"),
        )
        store = FakeSalesStore(error=duckdb.BinderException("no such column: nope"))
        tools = SalesTools(completion_client, store)

        with pytest.raises(ToolExecutionError, match="Failed to select data from database: no such column"):  # noqa: E501
            await tools.look_up_sales_data(LookUpSalesDataArgs(prompt="all"), run)

    @pytest.mark.asyncio
    @respx.mock
    async def test__look_up_sales_data__completion_failure(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        run: RunContext,
    ):
        respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(
            return_value=create_error_response(500, "server error"),
        )
        tools = SalesTools(completion_client, fake_store)

        with pytest.raises(ToolExecutionError, match="Failed to generate SQL query"):
            await tools.look_up_sales_data(LookUpSalesDataArgs(prompt="all"), run)
        assert fake_store.queries == []

    @pytest.mark.asyncio
    @respx.mock
    async def test__analyze_sales_data(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        run: RunContext,
    ):
        route = respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(
            return_value=create_http_response("\nSales were flat week over week.\n"),
        )
        tools = SalesTools(completion_client, fake_store)

        analysis = await tools.analyze_sales_data(
            AnalyzeSalesDataArgs(prompt="Any trend?", data="store, sales\n7, 120"),
            run,
        )

        assert analysis == "Sales were flat week over week."
        prompt = sent_prompt(route)
        assert "Analyze the following data: store, sales\n7, 120" in prompt
        assert "answer the following question: Any trend?" in prompt

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("response", [
        create_http_response("  \n"),
        create_error_response(500, "server error"),
    ])
    async def test__analyze_sales_data__no_analysis(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        run: RunContext,
        response,  # noqa: ANN001
    ):
        respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(return_value=response)
        tools = SalesTools(completion_client, fake_store)

        with pytest.raises(ToolExecutionError, match="No analysis could be generated"):
            await tools.analyze_sales_data(AnalyzeSalesDataArgs(prompt="?", data="x"), run)

    @pytest.mark.asyncio
    @respx.mock
    async def test__generate_visualization(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        run: RunContext,
    ):
        config = {"chartType": "bar", "xAxis": "store", "yAxis": "sales", "title": "Sales by store"}
        route = respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(side_effect=[
            create_http_response(json.dumps(config)),
            create_http_response("```python\nimport matplotlib.pyplot as plt\n```"),
        ])
        tools = SalesTools(completion_client, fake_store)

        code = await tools.generate_visualization(
            GenerateVisualizationArgs(data="store, sales\n7, 120", visualization_goal="Sales by store"),
            run,
        )

        assert code == "import matplotlib.pyplot as plt"
        config_request = request_json(route.calls[0].request)
        assert config_request["response_format"] == CHART_CONFIG_RESPONSE_FORMAT
        assert '"chartType": "bar"' in sent_prompt(route, 1)

    @pytest.mark.asyncio
    @respx.mock
    async def test__generate_visualization__falls_back_to_line_chart(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        run: RunContext,
        caplog: pytest.LogCaptureFixture,
    ):
        route = respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(side_effect=[
            create_http_response("not a chart config"),
            create_http_response("plt.plot()"),
        ])
        tools = SalesTools(completion_client, fake_store)

        code = await tools.generate_visualization(
            GenerateVisualizationArgs(data="d", visualization_goal="Weekly trend"),
            run,
        )

        assert code == "plt.plot()"
        chart_prompt = sent_prompt(route, 1)
        assert '"chartType": "line"' in chart_prompt
        assert '"title": "Weekly trend"' in chart_prompt
        assert "Using fallback chart configuration" in caplog.text

    @pytest.mark.asyncio
    @respx.mock
    async def test__generate_visualization__code_failure(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
        run: RunContext,
    ):
        respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(side_effect=[
            create_http_response("{}"),
            create_error_response(500, "server error"),
        ])
        tools = SalesTools(completion_client, fake_store)

        with pytest.raises(ToolExecutionError, match="Failed to generate chart code"):
            await tools.generate_visualization(
                GenerateVisualizationArgs(data="d", visualization_goal="g"),
                run,
            )

    def test__as_tools__match_bundled_catalog(
        self,
        completion_client: CompletionClient,
        fake_store: FakeSalesStore,
    ):
        tools = SalesTools(completion_client, fake_store).as_tools()
        dispatcher = ToolDispatcher(tools, completion_client.spans)

        tool_params = dispatcher.bind_catalog(load_tool_catalog())

        assert [param["function"]["name"] for param in tool_params] == [
            "LookUpSalesData",
            "AnalyzeSalesData",
            "GenerateVisualization",
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test__dispatch__failure_reaches_model_as_text(
        self,
        completion_client: CompletionClient,
        span_exporter: InMemorySpanExporter,
    ):
        respx.post(OPENAI_CHAT_COMPLETIONS_URL).mock(
            return_value=create_http_response("SELECT * FROM missing"),
        )
        store = FakeSalesStore(error=duckdb.CatalogException("no such table: missing"))
        dispatcher = ToolDispatcher(
            SalesTools(completion_client, store).as_tools(),
            completion_client.spans,
        )
        run = RunContext()
        call = ToolCallRequest(id="call_1", name="LookUpSalesData", arguments='{"prompt": "x"}')

        with completion_client.spans.open_span(
            "HandleToolCalls", SpanKind.CHAIN, run, role=SpanRole.TOOL_HANDLING,
        ):
            result = await dispatcher.dispatch(call, run)

        assert result.success is False
        assert result.content == "Failed to select data from database: no such table: missing"
        tool_span = only_span(span_exporter, "LookUpSalesData")
        assert parent_id(only_span(span_exporter, "ChatCompletion")) == tool_span.context.span_id
