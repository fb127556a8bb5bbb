"""
Test configuration and fixtures for the sales agent.

Imports the centralized fixtures from the fixtures/ package and provides the
HTTP-level client fixtures used with respx.
"""

import os

# Keep tests independent of a developer's Phoenix collector configuration
os.environ.pop("PHOENIX_COLLECTOR_ENDPOINT", None)

import pytest
from openai import AsyncOpenAI

from sales_agent.completion import CompletionClient
from sales_agent.span_tree import SpanTreeManager

# Import all centralized fixtures to make them available globally
from tests.fixtures.responses import *  # noqa: F403
from tests.fixtures.stores import *  # noqa: F403
from tests.fixtures.tools import *  # noqa: F403
from tests.fixtures.tracing import *  # noqa: F403


@pytest.fixture
def openai_client() -> AsyncOpenAI:
    """AsyncOpenAI client pointed at the URL respx intercepts, without retries."""
    return AsyncOpenAI(
        api_key="test-api-key",
        base_url="https://api.openai.com/v1",
        max_retries=0,
    )


@pytest.fixture
def completion_client(openai_client: AsyncOpenAI, spans: SpanTreeManager) -> CompletionClient:
    return CompletionClient(openai_client, spans, model="gpt-4o-mini", max_output_tokens=1000)
