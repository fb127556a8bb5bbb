"""
OpenTelemetry tracing configuration for the sales agent.

This module provides utilities for setting up distributed tracing with Phoenix Arize.
"""

import logging

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, ConsoleSpanExporter
from phoenix.otel import register

logger = logging.getLogger(__name__)


def setup_tracing(
    enabled: bool = True,
    project_name: str = 'sales-agent',
    endpoint: str | None = None,
    enable_console_export: bool = False,
    batch: bool = True,
) -> TracerProvider:
    """
    Initialize OpenTelemetry tracing with Phoenix backend.

    This uses the Phoenix-specific configuration so spans carry the
    openinference project name and show up properly in the Phoenix UI.

    Args:
        enabled:
            Whether to enable tracing. If False, installs a provider without exporters.
        project_name:
            Name of the project for organizing traces in Phoenix.
        endpoint:
            Phoenix OTLP endpoint. If None, uses PHOENIX_COLLECTOR_ENDPOINT env var
            or defaults to http://localhost:4317.
        enable_console_export:
            Whether to also export spans to console for debugging.
        batch:
            Whether finished spans are shipped through a batching processor.

    Returns:
        Configured TracerProvider instance.

    Example:
        >>> settings = Settings()
        >>> tracer_provider = setup_tracing(
        ...     enabled=settings.enable_tracing,
        ...     project_name=settings.phoenix_project_name,
        ...     endpoint=settings.phoenix_collector_endpoint
        ... )
    """
    if not enabled:
        no_op_provider = TracerProvider()
        trace.set_tracer_provider(no_op_provider)
        return no_op_provider

    tracer_provider = register(
        project_name=project_name,
        endpoint=endpoint,
        batch=batch,
        # LLM spans come from CompletionClient
        auto_instrument=False,
    )
    logger.info(f"Tracing enabled for project '{project_name}'")

    if enable_console_export:
        console_exporter = ConsoleSpanExporter()
        console_processor = SimpleSpanProcessor(console_exporter)
        tracer_provider.add_span_processor(console_processor)

    return tracer_provider


def shutdown_tracing(tracer_provider: TracerProvider) -> None:
    """Flush pending spans and shut the provider down."""
    tracer_provider.force_flush()
    tracer_provider.shutdown()
