"""
Declarative tool catalog.

The catalog is a static JSON list of tool definitions loaded once per run,
in the chat completions format:

    {"type": "function",
     "function": {"name": ..., "description": ...,
                  "parameters": {"type": "object", "properties": {...}, "required": [...]}}}
"""

import logging
from importlib import resources
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import ToolCatalogError

logger = logging.getLogger(__name__)

BUNDLED_CATALOG = "tools.json"


class ToolParameterProperty(BaseModel):
    """Schema of a single tool parameter."""

    model_config = ConfigDict(frozen=True)

    type: str
    description: str = ""


class ToolParameters(BaseModel):
    """Parameter schema of a tool function."""

    model_config = ConfigDict(frozen=True)

    type: str = "object"
    properties: dict[str, ToolParameterProperty] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


class ToolFunction(BaseModel):
    """Function section of a tool definition."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: ToolParameters


class ToolDefinition(BaseModel):
    """A catalog entry describing one tool offered to the completion endpoint."""

    model_config = ConfigDict(frozen=True)

    type: str = "function"
    function: ToolFunction

    @property
    def name(self) -> str:
        return self.function.name


_catalog_adapter = TypeAdapter(list[ToolDefinition])


def parse_tool_catalog(raw_json: str | bytes) -> list[ToolDefinition]:
    """
    Parse a tool catalog from JSON text.

    Raises:
        ToolCatalogError: If the JSON is invalid or does not match the catalog schema.
    """
    try:
        return _catalog_adapter.validate_json(raw_json)
    except ValidationError as e:
        raise ToolCatalogError(f"Invalid tool catalog: {e}") from e


def load_tool_catalog(path: str | Path | None = None) -> list[ToolDefinition]:
    """
    Load tool definitions from a JSON file.

    Args:
        path: Catalog file. None (or empty) loads the catalog bundled with the package.

    Returns:
        Tool definitions in file order.

    Raises:
        ToolCatalogError: If the file cannot be read or is not a valid catalog.
    """
    if path:
        logger.info(f"Loading tool catalog from {path}")
        try:
            raw_json = Path(path).read_bytes()
        except OSError as e:
            raise ToolCatalogError(f"Could not read tool catalog '{path}': {e}") from e
    else:
        logger.info("Loading bundled tool catalog")
        raw_json = (resources.files("sales_agent") / "data" / BUNDLED_CATALOG).read_bytes()

    return parse_tool_catalog(raw_json)
