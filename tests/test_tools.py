"""Tests for MCP tools."""

from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from fastmcp import FastMCP

from vault_search.search import LocalVault, SearchService
from vault_search.tools import register_tools


@pytest.fixture
def test_vault_root(tmp_path):
    """Create a temporary vault for testing."""
    vault_root = tmp_path / "vault"
    (vault_root / "Work").mkdir(parents=True)
    (vault_root / "Personal").mkdir()

    (vault_root / "Work" / "weekly-review.md").write_text("""---
status: done
priority: 2
tags: [review]
---

# Weekly Review

Notes from the weekly review meeting.
""")

    (vault_root / "Work" / "budget.md").write_text("""---
status: open
priority: 5
---

# Budget

Budget meeting planning.
""")

    (vault_root / "Personal" / "groceries.md").write_text("Milk, eggs and bread.")
    return vault_root


@pytest_asyncio.fixture
async def tools(test_vault_root, tmp_path):
    service = SearchService(LocalVault(test_vault_root), tmp_path / "index.db")
    registered = register_tools(FastMCP("test"), service)
    yield registered
    await service.close()


class TestRegistration:
    def test_registers_all_tools(self, tmp_path):
        mcp = MagicMock()
        service = SearchService(LocalVault(tmp_path), tmp_path / "index.db")
        tools = register_tools(mcp, service)

        assert set(tools) == {"search", "build_search_index", "index_status", "list_property_names"}
        assert mcp.tool.call_count == 4


class TestSearchTool:
    @pytest.mark.asyncio
    async def test_keyword_search(self, tools):
        result = await tools["search"](keywords=["meeting"])

        assert result["total_count"] == 2
        paths = {item["path"] for item in result["items"]}
        assert paths == {"Work/weekly-review.md", "Work/budget.md"}
        assert all(item["keywords_matched"] == ["meeting"] for item in result["items"])

    @pytest.mark.asyncio
    async def test_combined_fields(self, tools):
        result = await tools["search"](
            keywords=["meeting"],
            properties=[{"name": "priority", "value": 3, "operator": ">"}],
        )
        assert [item["path"] for item in result["items"]] == ["Work/budget.md"]

    @pytest.mark.asyncio
    async def test_filename_search(self, tools):
        result = await tools["search"](filenames=["^Weekly Review$"])
        assert [item["path"] for item in result["items"]] == ["Work/weekly-review.md"]

    @pytest.mark.asyncio
    async def test_compound_operations(self, tools):
        result = await tools["search"](
            operations=[{"keywords": ["bread"]}, {"properties": [{"name": "tags", "value": "#review"}]}]
        )
        paths = {item["path"] for item in result["items"]}
        assert paths == {"Personal/groceries.md", "Work/weekly-review.md"}

    @pytest.mark.asyncio
    async def test_pagination(self, tools):
        result = await tools["search"](folders=["Work"], page=2, limit=1)
        assert result["total_count"] == 2
        assert result["total_pages"] == 2
        assert result["page"] == 2
        assert len(result["items"]) == 1

    @pytest.mark.asyncio
    async def test_invalid_query_returns_error(self, tools):
        result = await tools["search"](properties=[{"name": "status", "value": "x", "operator": "like"}])
        assert "error" in result
        assert "Unknown operator" in result["error"]

    @pytest.mark.asyncio
    async def test_invalid_page_returns_error(self, tools):
        result = await tools["search"](keywords=["meeting"], page=0)
        assert "error" in result

    @pytest.mark.asyncio
    async def test_empty_search(self, tools):
        result = await tools["search"]()
        assert result["items"] == []
        assert result["total_count"] == 0


class TestIndexTools:
    @pytest.mark.asyncio
    async def test_index_status(self, tools):
        status = await tools["index_status"]()
        assert status["documents"] == 3
        assert status["pending"] == 0

    @pytest.mark.asyncio
    async def test_build_search_index(self, tools, test_vault_root):
        (test_vault_root / "Work" / "new.md").write_text("fresh note")
        result = await tools["build_search_index"](force=True)
        assert result == {"documents": 4, "rebuilt": True}

    @pytest.mark.asyncio
    async def test_list_property_names(self, tools):
        names = await tools["list_property_names"]()
        assert {"status", "priority", "tags", "file_type", "file_category"} <= set(names)
        assert names == sorted(names)
