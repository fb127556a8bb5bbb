"""Tests for tool catalog loading."""

import json
from pathlib import Path

import pytest

from sales_agent.errors import ToolCatalogError
from sales_agent.tool_catalog import load_tool_catalog, parse_tool_catalog
from tests.fixtures.tools import LOOKUP_DEFINITION


class TestToolCatalog:

    def test__load_tool_catalog__bundled_catalog_lists_sales_tools(self):
        catalog = load_tool_catalog()

        assert [definition.name for definition in catalog] == [
            "LookUpSalesData",
            "AnalyzeSalesData",
            "GenerateVisualization",
        ]
        visualization = catalog[2].function.parameters
        assert set(visualization.properties) == {"data", "visualizationGoal"}
        assert all(definition.type == "function" for definition in catalog)

    def test__load_tool_catalog__reads_file(self, tmp_path: Path):
        path = tmp_path / "tools.json"
        path.write_text(json.dumps([LOOKUP_DEFINITION]))

        catalog = load_tool_catalog(path)

        assert len(catalog) == 1
        assert catalog[0].function.parameters.required == ["prompt"]

    def test__load_tool_catalog__empty_path_uses_bundled_catalog(self):
        assert len(load_tool_catalog("")) == 3

    def test__load_tool_catalog__missing_file(self, tmp_path: Path):
        with pytest.raises(ToolCatalogError, match="Could not read tool catalog"):
            load_tool_catalog(tmp_path / "missing.json")

    @pytest.mark.parametrize("raw_json", [
        "not json",
        '{"type": "function"}',
        '[{"type": "function", "function": {"name": "x"}}]',
    ])
    def test__parse_tool_catalog__invalid_catalog(self, raw_json: str):
        with pytest.raises(ToolCatalogError, match="Invalid tool catalog"):
            parse_tool_catalog(raw_json)
