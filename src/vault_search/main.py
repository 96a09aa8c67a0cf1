"""Main entry point for the vaultsearch MCP server."""

import argparse
import asyncio
import logging
import sys

from fastmcp import FastMCP

from vault_search.config import Config
from vault_search.search import LocalVault, SearchService
from vault_search.tools import register_tools

logger = logging.getLogger(__name__)


def create_service(config: Config) -> SearchService:
    return SearchService(
        LocalVault(config.vault_root, config.extensions),
        config.vault_db,
        excluded_folders=config.excluded_folders,
        watch_interval=config.sync_interval,
    )


def create_server(config: Config) -> FastMCP:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.
    """
    mcp = FastMCP(
        name="vaultSearch",
        instructions=(
            "vaultSearch provides full-text search over a vault of markdown notes. "
            "Use the search tool with keywords, exact phrases in quotes, file name "
            "patterns, folders and frontmatter properties to find notes."
        ),
    )

    logger.info("Search index at %s", config.vault_db)
    service = create_service(config)

    logger.info("Registering tools...")
    register_tools(mcp, service)

    logger.info("Server configured successfully")
    return mcp


async def reindex(config: Config) -> int:
    """Rebuild the index from scratch and return the document count."""
    service = SearchService(
        LocalVault(config.vault_root, config.extensions),
        config.vault_db,
        excluded_folders=config.excluded_folders,
    )
    try:
        await service.store.initialize()
        service.indexer.start()
        return await service.build_index(force=True)
    finally:
        await service.close()


def main() -> None:
    """Main function - starts the MCP server."""
    config = Config.from_env()

    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="vaultSearch - MCP search server for note vaults")
    parser.add_argument(
        "--reindex",
        action="store_true",
        help="Rebuild the search index before starting",
    )
    args = parser.parse_args()

    # Print startup banner
    logger.info("=" * 50)
    logger.info("vaultSearch starting...")
    logger.info("  VAULT_ROOT:     %s", config.vault_root)
    logger.info("  VAULT_PORT:     %s", config.vault_port)
    logger.info("  VAULT_DB:       %s", config.vault_db)
    logger.info("  EXCLUDED:       %s", ", ".join(config.excluded_folders) or "none")
    logger.info("  SYNC_INTERVAL:  %s", config.sync_interval or "disabled")
    logger.info("=" * 50)

    if args.reindex:
        logger.info("Force reindex requested...")
        doc_count = asyncio.run(reindex(config))
        logger.info("Reindex complete: %d documents indexed", doc_count)

    try:
        mcp = create_server(config)
        logger.info("Starting MCP server on port %s...", config.vault_port)
        mcp.run(transport="sse", host="0.0.0.0", port=config.vault_port)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception:
        logger.exception("Server error")
        sys.exit(1)


if __name__ == "__main__":
    main()
