"""Indexer that turns vault file events into document store mutations.

All mutations go through one queue drained by a single consumer task, so at
most one index/remove operation is in flight at a time. Pending work is
deduplicated by path: a path queued twice runs once, with the latest action.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath

from vault_search.search import tokenizer as tokenizers
from vault_search.search.database import DocumentStore
from vault_search.search.extractors import extract_pdf_text, is_pdf_path
from vault_search.search.models import Document, IndexedTerm, TermSource
from vault_search.search.parser import ParsedNote, file_properties, parse_note
from vault_search.search.tokenizer import Tokenizer
from vault_search.search.vault import Vault

logger = logging.getLogger(__name__)

# Notes that are chat command lines rather than notes
COMMAND_PREFIXES = (
    "/ ",
    "/search",
    "/more",
    "/close",
    "/yes",
    "/no",
    "/image",
    "/audio",
    "/speak",
    "/prompt",
    "/create",
    "/stop",
    "/abort",
)
COMMAND_PATTERN = re.compile(
    r"^\s*(?:" + "|".join(re.escape(prefix) for prefix in COMMAND_PREFIXES) + r")\b",
    re.MULTILINE,
)


class EventKind(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass
class FileEvent:
    """A change reported by the vault watcher."""

    kind: EventKind
    path: str
    old_path: str | None = None


class Action(str, Enum):
    INDEX = "index"
    REMOVE = "remove"


@dataclass
class _WorkItem:
    action: Action
    waiters: list[asyncio.Future] = field(default_factory=list)


def contains_command(content: str) -> bool:
    return COMMAND_PATTERN.search(content) is not None


def folder_of(path: str) -> str:
    parent = PurePosixPath(path).parent.as_posix()
    return "" if parent == "." else parent


class Indexer:
    """Reactive indexer with a single-flight mutation queue."""

    def __init__(
        self,
        vault: Vault,
        store: DocumentStore,
        content_tokenizer: Tokenizer | None = None,
        name_tokenizer: Tokenizer | None = None,
    ):
        self.vault = vault
        self.store = store
        self.content_tokenizer = content_tokenizer or tokenizers.content_tokenizer()
        self.name_tokenizer = name_tokenizer or tokenizers.name_tokenizer()

        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._pending: dict[str, _WorkItem] = {}
        self._worker: asyncio.Task | None = None
        self._closed = False

        # Change-detection cache for the note currently open in the host
        self._active_path: str | None = None
        self._active_token_count: int | None = None

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the consumer task on the running loop."""
        if self._worker is not None and not self._worker.done():
            return
        self._closed = False
        self._worker = asyncio.create_task(self._run(), name="vault-search-indexer")

    def enqueue(self, path: str, action: Action = Action.INDEX) -> asyncio.Future:
        """Queue work for a path and return a future resolved when it ran.

        The future's result is True when the operation changed the index.
        """
        if self._closed:
            raise RuntimeError("Indexer is closed")
        self.start()

        future = asyncio.get_running_loop().create_future()
        item = self._pending.get(path)
        if item is None:
            self._pending[path] = _WorkItem(action=action, waiters=[future])
            self._queue.put_nowait(path)
        else:
            item.action = action
            item.waiters.append(future)
        return future

    async def _run(self) -> None:
        while True:
            path = await self._queue.get()
            try:
                if path is None:
                    return
                item = self._pending.pop(path, None)
                if item is None:
                    continue

                changed = False
                try:
                    if item.action is Action.REMOVE:
                        changed = await self._remove(path)
                    else:
                        changed = await self._index(path)
                except Exception:
                    logger.exception("Error while processing %s (%s)", path, item.action.value)

                for waiter in item.waiters:
                    if not waiter.done():
                        waiter.set_result(changed)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued operation has run."""
        if self._worker is None:
            return
        await self._queue.join()

    def pending_count(self) -> int:
        return len(self._pending)

    def _discard_pending(self) -> None:
        for item in self._pending.values():
            for waiter in item.waiters:
                if not waiter.done():
                    waiter.set_result(False)
        self._pending.clear()

    async def close(self) -> None:
        """Drop queued work and stop after the in-flight operation."""
        self._closed = True
        self._discard_pending()
        if self._worker is not None and not self._worker.done():
            self._queue.put_nowait(None)
            await self._worker
        self._worker = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def index_file(self, path: str) -> bool:
        return await self.enqueue(path, Action.INDEX)

    async def remove_from_index(self, path: str) -> bool:
        return await self.enqueue(path, Action.REMOVE)

    async def index_all_files(self) -> int:
        """Queue every vault file for indexing and every stale document for removal.

        Returns the number of files queued for indexing.
        """
        self._discard_pending()

        files = [path for path in await self.vault.list_files() if not self.store.is_excluded(path)]
        listed = set(files)
        for document in await self.store.get_all_documents():
            if document.path not in listed:
                self.enqueue(document.path, Action.REMOVE)
        for path in files:
            self.enqueue(path, Action.INDEX)

        logger.info("Queued %d files for indexing", len(files))
        return len(files)

    async def handle_event(self, event: FileEvent) -> None:
        """React to a vault change. Returns once the work is queued."""
        if event.kind is EventKind.DELETE:
            if event.path == self._active_path:
                self._clear_active()
            self.enqueue(event.path, Action.REMOVE)

        elif event.kind is EventKind.RENAME:
            if event.old_path:
                self.enqueue(event.old_path, Action.REMOVE)
                if event.old_path == self._active_path:
                    self._active_path = event.path
            if not self.store.is_excluded(event.path):
                self.enqueue(event.path, Action.INDEX)

        elif event.kind is EventKind.MODIFY and event.path == self._active_path:
            if await self._active_file_changed(event.path):
                self.enqueue(event.path, Action.INDEX)
            else:
                logger.debug("Token count unchanged for %s, skipping reindex", event.path)

        elif not self.store.is_excluded(event.path):
            self.enqueue(event.path, Action.INDEX)

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------

    def _clear_active(self) -> None:
        self._active_path = None
        self._active_token_count = None

    async def _count_tokens(self, path: str) -> int | None:
        if not self.vault.is_text(path):
            return None
        try:
            content = await self.vault.read(path)
        except OSError as e:
            logger.debug("Cannot read %s for change detection: %s", path, e)
            return None
        return len(self.content_tokenizer.tokenize(parse_note(content, path).body))

    async def set_active_file(self, path: str | None) -> None:
        """Remember the note the user is viewing and its token count."""
        if path is None:
            self._clear_active()
            return
        self._active_path = path
        self._active_token_count = await self._count_tokens(path)

    async def _active_file_changed(self, path: str) -> bool:
        count = await self._count_tokens(path)
        if count is None or count != self._active_token_count:
            self._active_token_count = count
            return True
        return False

    # ------------------------------------------------------------------
    # Mutations (only called from the consumer task)
    # ------------------------------------------------------------------

    async def _read_note(self, path: str) -> ParsedNote:
        if self.vault.is_text(path):
            content = await self.vault.read(path)
            return parse_note(content, path)

        # Other files are searchable by name; PDFs by their text as well
        body = PurePosixPath(path).stem
        if is_pdf_path(path):
            text = await self._pdf_text(path)
            if text:
                body = f"{body}\n{text}"
        return ParsedNote(body=body, properties=file_properties(path))

    async def _pdf_text(self, path: str) -> str:
        data = await self.vault.read_bytes(path)
        try:
            return await asyncio.to_thread(extract_pdf_text, data)
        except (RuntimeError, ValueError) as e:
            logger.warning("Cannot extract text from %s, indexing by name only: %s", path, e)
            return ""

    async def _index(self, path: str) -> bool:
        if self.store.is_excluded(path):
            logger.debug("Skipping excluded path %s", path)
            return False

        stat = await self.vault.stat(path)
        if stat is None:
            logger.debug("File %s no longer exists, removing from index", path)
            return await self._remove(path)

        note = await self._read_note(path)
        if contains_command(note.body):
            logger.debug("Skipping command note %s", path)
            await self._remove(path)
            return False

        folder_id = await self.store.get_or_create_folder(folder_of(path))
        stem = PurePosixPath(path).stem

        existing = await self.store.get_document_by_path(path)
        document = Document(
            id=existing.id if existing else None,
            path=path,
            file_name=stem.lower(),
            mtime=stat.mtime,
            tags=note.tags,
            token_count=len(note.body.split()),
        )
        if existing is None:
            await self.store.store_document(document)
        else:
            await self.store.update_document(document)

        await self.store.delete_terms_by_document(document.id)
        await self.store.delete_properties_by_document(document.id)

        postings = [
            IndexedTerm(
                term=token.term,
                document_id=document.id,
                folder_id=folder_id,
                source=source,
                frequency=token.count,
                positions=token.positions,
            )
            for source, tokens in (
                (TermSource.CONTENT, self.content_tokenizer.tokenize(note.body)),
                (TermSource.FILENAME, self.name_tokenizer.tokenize(stem)),
            )
            for token in tokens
        ]
        await self.store.store_terms(postings)
        await self.store.store_properties(document.id, note.properties)

        logger.debug("Indexed %s (%d postings)", path, len(postings))
        return True

    async def _remove(self, path: str) -> bool:
        document = await self.store.get_document_by_path(path)
        if document is None:
            return False

        await self.store.delete_terms_by_document(document.id)
        await self.store.delete_properties_by_document(document.id)
        await self.store.delete_document(document.id)

        folder_path = folder_of(path)
        if folder_path and await self.store.count_documents_in_folder(folder_path) == 0:
            folder = await self.store.get_folder_by_path(folder_path)
            if folder is not None:
                await self.store.delete_folder(folder.id)

        logger.debug("Removed %s from index", path)
        return True
