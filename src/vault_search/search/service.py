"""Search service: wires the store, indexer, scoring and query engine together."""

import asyncio
import logging
import math
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from vault_search.search.conditions import SearchContext
from vault_search.search.database import DocumentStore
from vault_search.search.errors import InvalidQueryError
from vault_search.search.indexer import FileEvent, Indexer
from vault_search.search.models import Page, ScoredDocument
from vault_search.search.query import QueryExecutor, QueryOperation, build_query
from vault_search.search.scoring import Scoring, ScoringConfig
from vault_search.search.tokenizer import content_tokenizer, name_tokenizer
from vault_search.search.vault import LocalVault, Vault

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 20


def paginate(results: Sequence[ScoredDocument], page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> Page:
    """Slice a ranked result list into one page."""
    if page < 1:
        raise InvalidQueryError(f"page must be >= 1, got {page}")
    if limit < 1:
        raise InvalidQueryError(f"limit must be >= 1, got {limit}")

    total = len(results)
    start = (page - 1) * limit
    return Page(
        items=list(results[start : start + limit]),
        total_count=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    )


class SearchService:
    """Owns one index over one vault.

    Usage:
        service = SearchService(LocalVault(root), db_path)
        await service.initialize()
        results = await service.search([QueryOperation(keywords=["fox"])])
        await service.close()
    """

    def __init__(
        self,
        vault: Vault,
        db_path: Path,
        excluded_folders: Iterable[str] = (),
        scoring: ScoringConfig | None = None,
        watch_interval: float = 0,
    ):
        self.vault = vault
        self.store = DocumentStore(db_path, excluded_folders)
        self.content_tokenizer = content_tokenizer()
        self.name_tokenizer = name_tokenizer()
        self.indexer = Indexer(vault, self.store, self.content_tokenizer, self.name_tokenizer)
        self.scoring = Scoring(self.store, scoring)
        self.watch_interval = watch_interval
        self._watcher = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Open the index, build it if empty and start watching for changes.

        Concurrent callers share one initialization.
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            await self.store.initialize()
            self.indexer.start()

            if await self.store.count_documents() == 0:
                logger.info("Search index is empty, building it")
                await self.build_index()

            if self.watch_interval > 0 and isinstance(self.vault, LocalVault):
                from vault_search.sync import VaultWatcher

                self._watcher = VaultWatcher(self.vault, self.handle_event, self.watch_interval)
                await self._watcher.start()

            self._initialized = True

    async def build_index(self, force: bool = False) -> int:
        """Index every vault file and wait for completion.

        Returns the number of indexed documents.
        """
        if force:
            logger.info("Clearing search index before rebuild")
            await self.indexer.close()
            await self.store.clear()
            self.indexer.start()

        queued = await self.indexer.index_all_files()
        await self.indexer.join()
        count = await self.store.count_documents()
        logger.info("Index build complete: %d files queued, %d documents indexed", queued, count)
        return count

    async def handle_event(self, event: FileEvent) -> None:
        await self.indexer.handle_event(event)

    def update_excluded_folders(self, folders: Iterable[str]) -> None:
        self.store.update_excluded_folders(folders)

    def _context(self) -> SearchContext:
        return SearchContext(
            store=self.store,
            scoring=self.scoring,
            content_tokenizer=self.content_tokenizer,
            name_tokenizer=self.name_tokenizer,
        )

    async def search(self, operations: Sequence[QueryOperation | dict[str, Any]]) -> list[ScoredDocument]:
        """Run a compound query: each operation is an AND group, groups are ORed.

        Returns documents ranked by score, excluded folders removed.
        """
        parsed = [op if isinstance(op, QueryOperation) else QueryOperation.from_dict(op) for op in operations]
        condition = build_query(parsed)

        result = await QueryExecutor(self._context()).execute(condition)
        return [
            ScoredDocument(
                document=match.document,
                score=match.score,
                keywords_matched=list(match.keywords_matched),
            )
            for match in result.results
            if not self.store.is_excluded(match.document.path)
        ]

    async def search_page(
        self,
        operations: Sequence[QueryOperation | dict[str, Any]],
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Page:
        return paginate(await self.search(operations), page, limit)

    def paginate(self, results: Sequence[ScoredDocument], page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> Page:
        return paginate(results, page, limit)

    async def status(self) -> dict[str, Any]:
        return {
            "documents": await self.store.count_documents(),
            "folders": await self.store.count_folders(),
            "pending": self.indexer.pending_count(),
            "schema_version": await self.store.get_schema_version(),
            "excluded_folders": self.store.excluded_folders,
            "watching": self._watcher is not None and self._watcher.running,
        }

    async def close(self) -> None:
        if self._watcher is not None:
            await self._watcher.stop()
            self._watcher = None
        await self.indexer.close()
        await self.store.close()
        self._initialized = False
