"""
Sales dataset tools exposed to the completion endpoint.

Three tools make up the closed tool set of the agent:
- LookUpSalesData: turns a question into SQL, runs it and returns the rows as text
- AnalyzeSalesData: asks the model to analyze previously looked-up data
- GenerateVisualization: derives a chart configuration and returns Python chart code

Each tool runs inside the TOOL span opened by the dispatcher; its own
completion requests are parented under the run's tool slot.
"""

import asyncio
import json
import logging
from typing import Any, Protocol

import duckdb
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .completion import CompletionClient
from .conversation import ChatMessage
from .errors import CompletionError, ToolExecutionError
from .span_tree import RunContext, SpanRole
from .tools import Tool

logger = logging.getLogger(__name__)

LOOK_UP_SALES_DATA = "LookUpSalesData"
ANALYZE_SALES_DATA = "AnalyzeSalesData"
GENERATE_VISUALIZATION = "GenerateVisualization"

SQL_GENERATION_PROMPT = """
Generate an SQL query based on a prompt. Do not reply with anything besides the SQL query.
The prompt is:
{prompt}

The available columns are: {columns}
The table name is: {table_name}
"""

DATA_ANALYSIS_PROMPT = """
Analyze the following data: {data}
Your job is to answer the following question: {prompt}
"""

CHART_CONFIG_PROMPT = """
Generate a chart configuration based on this data: {data}
The goal is to show: {visualization_goal}
"""

CREATE_CHART_PROMPT = """
Write python code to create a chart based on the following configuration.
Only return the code, no other text.
config: {config}
"""

# Hand-maintained to match ChartConfig; strict structured outputs require
# every property to be listed as required.
CHART_CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "chartType": {"type": "string", "description": "Type of chart to generate"},
        "xAxis": {"type": "string", "description": "Name of the X Axis column"},
        "yAxis": {"type": "string", "description": "Name of the Y Axis column"},
        "title": {"type": "string", "description": "Title of the chart"},
    },
    "required": ["chartType", "xAxis", "yAxis", "title"],
    "additionalProperties": False,
}

CHART_CONFIG_RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "chartConfiguration",
        "description": "A simple configuration for a chart",
        "schema": CHART_CONFIG_SCHEMA,
        "strict": True,
    },
}


class LookUpSalesDataArgs(BaseModel):
    """Arguments of LookUpSalesData."""

    prompt: str = Field(description="Question the data lookup should answer")


class AnalyzeSalesDataArgs(BaseModel):
    """Arguments of AnalyzeSalesData."""

    prompt: str = Field(description="Question the analysis should answer")
    data: str = Field(description="Data to analyze")


class GenerateVisualizationArgs(BaseModel):
    """Arguments of GenerateVisualization."""

    model_config = ConfigDict(populate_by_name=True)

    data: str = Field(description="Data to visualize")
    visualization_goal: str = Field(
        alias="visualizationGoal",
        description="What the chart should show",
    )


class ChartConfig(BaseModel):
    """Chart configuration extracted through structured output."""

    model_config = ConfigDict(populate_by_name=True)

    chart_type: str = Field(alias="chartType")
    x_axis: str = Field(alias="xAxis")
    y_axis: str = Field(alias="yAxis")
    title: str

    @classmethod
    def fallback(cls, visualization_goal: str) -> "ChartConfig":
        """Configuration used when none can be extracted."""
        return cls(chart_type="line", x_axis="date", y_axis="value", title=visualization_goal)


class QueryResult(BaseModel):
    """Columns and rows returned by a query."""

    columns: list[str]
    rows: list[tuple[Any, ...]] = Field(default_factory=list)

    def to_text(self) -> str:
        """
        Render as comma-separated lines, header first.

        Example:
            >>> QueryResult(columns=["store", "sales"], rows=[(7, 120)]).to_text()
            'store, sales\\n7, 120'
        """
        lines = [", ".join(self.columns)]
        lines.extend(", ".join(str(value) for value in row) for row in self.rows)
        return "\n".join(lines)


class SalesDataStore(Protocol):
    """Query collaborator used by LookUpSalesData."""

    table_name: str

    async def columns(self) -> list[str]:
        ...

    async def query(self, sql: str) -> QueryResult:
        ...


class DuckDBSalesStore:
    """
    SalesDataStore backed by DuckDB.

    The sales table is created from the parquet dataset the first time the
    database file is opened; later queries reuse the stored table.
    """

    def __init__(self, data_path: str, database_path: str = "data.db", table_name: str = "sales"):
        if not table_name.isidentifier():
            raise ValueError(f"Invalid table name: {table_name!r}")
        self.data_path = data_path
        self.database_path = database_path
        self.table_name = table_name

    async def columns(self) -> list[str]:
        # A non-matching query returns the column names without reading rows
        result = await self.query(f'SELECT * FROM "{self.table_name}" WHERE 1=2')
        return result.columns

    async def query(self, sql: str) -> QueryResult:
        """
        Run a query in a worker thread.

        Raises:
            duckdb.Error: If the dataset cannot be loaded or the query fails.
        """
        return await asyncio.to_thread(self._query, sql)

    def _query(self, sql: str) -> QueryResult:
        with duckdb.connect(self.database_path) as connection:
            self._create_table(connection)
            cursor = connection.execute(sql)
            columns = [column[0] for column in cursor.description or []]
            return QueryResult(columns=columns, rows=cursor.fetchall())

    def _create_table(self, connection: duckdb.DuckDBPyConnection) -> None:
        [count] = connection.execute(
            "SELECT count(*) FROM information_schema.tables WHERE table_name = ?",
            [self.table_name],
        ).fetchone()
        if count:
            return

        logger.info(f"Loading table '{self.table_name}' from {self.data_path}")
        data_path = self.data_path.replace("'", "''")
        connection.execute(
            f'CREATE TABLE IF NOT EXISTS "{self.table_name}" AS '
            f"SELECT * FROM read_parquet('{data_path}')",
        )


def strip_code_fence(text: str, language: str) -> str:
    """Remove a markdown code fence (```<language> ... ```) around model output."""
    return text.strip("\n ").replace(f"```{language}", "").strip("`\n ")


class SalesTools:
    """Implementations of the sales tools, sharing one completion client and data store."""

    def __init__(self, completions: CompletionClient, store: SalesDataStore):
        self.completions = completions
        self.store = store

    async def _ask(self, prompt: str, run: RunContext, **kwargs: Any) -> str:
        result = await self.completions.complete(
            [ChatMessage.user(prompt)],
            run,
            parent_role=SpanRole.TOOL,
            **kwargs,
        )
        return result.content

    async def look_up_sales_data(self, args: LookUpSalesDataArgs, run: RunContext) -> str:
        """Generate SQL for the prompt, run it and return the rows as text."""
        try:
            columns = await self.store.columns()
        except Exception as e:
            raise ToolExecutionError(f"Failed to fetch database columns: {e}") from e

        try:
            sql = await self._ask(
                SQL_GENERATION_PROMPT.format(
                    prompt=args.prompt,
                    columns=", ".join(columns),
                    table_name=self.store.table_name,
                ),
                run,
            )
        except CompletionError as e:
            raise ToolExecutionError(f"Failed to generate SQL query: {e.message}") from e

        sql = strip_code_fence(sql, "sql")
        logger.info(f"Query to be used: {sql}")

        try:
            result = await self.store.query(sql)
        except Exception as e:
            raise ToolExecutionError(f"Failed to select data from database: {e}") from e
        return result.to_text()

    async def analyze_sales_data(self, args: AnalyzeSalesDataArgs, run: RunContext) -> str:
        """Ask the model to analyze the data in light of the prompt."""
        try:
            analysis = await self._ask(
                DATA_ANALYSIS_PROMPT.format(data=args.data, prompt=args.prompt),
                run,
            )
        except CompletionError as e:
            logger.warning(f"There was an issue with the analysis request: {e.message}")
            analysis = ""

        analysis = analysis.strip("\n ")
        if not analysis:
            raise ToolExecutionError("No analysis could be generated")
        return analysis

    async def extract_chart_config(self, data: str, visualization_goal: str, run: RunContext) -> ChartConfig:
        """Extract a chart configuration, falling back to a line chart on any failure."""
        try:
            content = await self._ask(
                CHART_CONFIG_PROMPT.format(data=data, visualization_goal=visualization_goal),
                run,
                response_format=CHART_CONFIG_RESPONSE_FORMAT,
            )
            return ChartConfig.model_validate_json(strip_code_fence(content, "json"))
        except (CompletionError, ValidationError) as e:
            logger.warning(f"Using fallback chart configuration: {e}")
            return ChartConfig.fallback(visualization_goal)

    async def generate_visualization(self, args: GenerateVisualizationArgs, run: RunContext) -> str:
        """Return Python code that draws a chart of the data."""
        config = await self.extract_chart_config(args.data, args.visualization_goal, run)
        config_text = json.dumps({"config": config.model_dump(by_alias=True), "data": args.data})
        try:
            code = await self._ask(CREATE_CHART_PROMPT.format(config=config_text), run)
        except CompletionError as e:
            raise ToolExecutionError(f"Failed to generate chart code: {e.message}") from e

        code = strip_code_fence(code, "python")
        if not code:
            raise ToolExecutionError("No chart code could be generated")
        return code

    def as_tools(self) -> list[Tool]:
        """The tool set registered with the dispatcher."""
        return [
            Tool(
                name=LOOK_UP_SALES_DATA,
                description="Look up data from the Store Sales Price Elasticity Promotions dataset",
                args_model=LookUpSalesDataArgs,
                function=self.look_up_sales_data,
            ),
            Tool(
                name=ANALYZE_SALES_DATA,
                description="Analyze sales data to extract insights",
                args_model=AnalyzeSalesDataArgs,
                function=self.analyze_sales_data,
            ),
            Tool(
                name=GENERATE_VISUALIZATION,
                description="Generate Python code to create data visualizations",
                args_model=GenerateVisualizationArgs,
                function=self.generate_visualization,
            ),
        ]
