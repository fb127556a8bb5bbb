"""
Configuration settings for the sales agent.

This module defines the application settings using Pydantic v2 BaseSettings,
including API keys, model selection, loop limits, tracing, and file locations.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that can answer questions about the "
    "Store Sales Price Elasticity Promotions dataset."
)


class Settings(BaseSettings):
    """Application settings for the sales agent."""

    # LLM API Configuration
    openai_api_key: str = Field(
        default="",
        alias="OPENAI_API_KEY",
        description="API key for the completion endpoint",
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        alias="OPENAI_BASE_URL",
        description="Base URL for the completion endpoint",
    )
    agent_model: str = Field(
        default="gpt-4o-mini",
        alias="AGENT_MODEL",
        description="Model used for router calls and tool sub-calls",
    )
    max_output_tokens: int = Field(
        default=1000,
        alias="MAX_OUTPUT_TOKENS",
        description="Maximum number of output tokens per completion request",
    )
    completion_max_retries: int = Field(
        default=0,
        alias="COMPLETION_MAX_RETRIES",
        description="Transport-level retries per completion request (0 disables retries)",
    )
    completion_timeout: float = Field(
        default=60.0,
        alias="COMPLETION_TIMEOUT",
        description="Timeout in seconds for a single completion request",
    )

    # Router Loop Configuration
    max_router_iterations: int = Field(
        default=10,
        alias="MAX_ROUTER_ITERATIONS",
        description="Maximum number of router calls in a single run",
    )
    run_timeout: float | None = Field(
        default=None,
        alias="RUN_TIMEOUT",
        description="Deadline in seconds for a whole agent run (unset means no deadline)",
    )
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        alias="SYSTEM_PROMPT",
        description="System directive prepended when a conversation has none",
    )

    # Tools and Data
    tools_config_path: str = Field(
        default="",
        alias="TOOLS_CONFIG_PATH",
        description="Path to the tool catalog JSON (empty uses the bundled catalog)",
    )
    sales_data_path: str = Field(
        default="Store_Sales_Price_Elasticity_Promotions_Data.parquet",
        alias="SALES_DATA_PATH",
        description="Parquet file the sales table is loaded from",
    )
    sales_database_path: str = Field(
        default="data.db",
        alias="SALES_DATABASE_PATH",
        description="DuckDB database file holding the sales table",
    )
    sales_table_name: str = Field(
        default="sales",
        alias="SALES_TABLE_NAME",
        description="Name of the sales table queried by the lookup tool",
    )
    history_path: str = Field(
        default="history.json",
        alias="HISTORY_PATH",
        description="Path of the JSON file used to persist conversation history",
    )

    # Phoenix Tracing Configuration
    phoenix_collector_endpoint: str = Field(
        default="http://localhost:4317",
        alias="PHOENIX_COLLECTOR_ENDPOINT",
        description="Phoenix OTLP collector endpoint for tracing",
    )
    phoenix_project_name: str = Field(
        default="sales-agent",
        alias="PHOENIX_PROJECT_NAME",
        description="Project name for organizing traces in Phoenix",
    )
    enable_tracing: bool = Field(
        default=False,
        alias="ENABLE_TRACING",
        description="Whether to enable OpenTelemetry tracing",
    )
    enable_console_tracing: bool = Field(
        default=False,
        alias="ENABLE_CONSOLE_TRACING",
        description="Whether to output traces to console for debugging",
    )

    # Development
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {
        'env_file': '.env',
        'env_file_encoding': 'utf-8',
        'case_sensitive': False,
        'extra': 'ignore',
    }
