"""MCP tools for the vaultsearch server.

This module defines the tools exposed by the MCP server:
- search: Compound keyword/filename/folder/property search over the vault
- build_search_index: Index (or fully rebuild) the vault
- index_status: Document and folder counts of the index
- list_property_names: Property names available for filtering
"""

import logging
from collections.abc import Callable
from typing import Any

from fastmcp import FastMCP

from vault_search.search import SearchError, SearchService

logger = logging.getLogger(__name__)


def register_tools(mcp: FastMCP, service: SearchService) -> dict[str, Callable]:
    """Register all tools with the FastMCP server.

    The service is initialized on the first tool call, inside the server's
    event loop.

    Args:
        mcp: FastMCP server instance
        service: Search service backing the tools

    Returns:
        The registered tool functions by name.
    """

    async def search(
        keywords: list[str] | None = None,
        filenames: list[str] | None = None,
        folders: list[str] | None = None,
        properties: list[dict[str, Any]] | None = None,
        operations: list[dict[str, Any]] | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Search notes in the vault.

        Fields of one operation are combined with AND. Pass several
        `operations` to OR them together; otherwise the top-level fields form
        a single operation.

        Args:
            keywords: Words to find; wrap in quotes for an exact phrase ("weekly review")
            filenames: File name patterns: ^name$ (similar), ^name (starts with), name (contains)
            folders: Folder names or paths (case-insensitive substring)
            properties: Filters like {"name": "status", "value": "done", "operator": "=="};
                operators are ==, !=, <, <=, >, >=
            operations: Compound query, a list of objects with the fields above
            page: Page number, starting at 1
            limit: Results per page (default: 20)

        Returns:
            Page of results with:
            - items: path, file_name, score and keywords_matched per note
            - total_count, page, limit, total_pages
        """
        if operations is None:
            operations = [
                {
                    "keywords": keywords or [],
                    "filenames": filenames or [],
                    "folders": folders or [],
                    "properties": properties or [],
                }
            ]

        try:
            await service.initialize()
            result = await service.search_page(operations, page=page, limit=limit)
        except SearchError as e:
            return {"error": str(e)}

        return {
            "items": [item.to_dict() for item in result.items],
            "total_count": result.total_count,
            "page": result.page,
            "limit": result.limit,
            "total_pages": result.total_pages,
        }

    async def build_search_index(force: bool = False) -> dict:
        """Index every note in the vault.

        Args:
            force: Clear the existing index and rebuild it from scratch

        Returns:
            Number of indexed documents.
        """
        await service.initialize()
        count = await service.build_index(force=force)
        return {"documents": count, "rebuilt": force}

    async def index_status() -> dict:
        """Report the state of the search index.

        Returns:
            Document, folder and pending-work counts, schema version and
            excluded folders.
        """
        await service.initialize()
        return await service.status()

    async def list_property_names() -> list[str]:
        """List the property names that can be used in property filters."""
        await service.initialize()
        return await service.store.get_all_property_names()

    tools = {
        fn.__name__: fn
        for fn in (search, build_search_index, index_status, list_property_names)
    }
    for fn in tools.values():
        mcp.tool()(fn)
    logger.debug("Registered tools: %s", ", ".join(tools))
    return tools
