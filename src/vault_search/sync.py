"""Background vault watcher for automatic index updates.

Polls the vault on an interval, diffs the file listing against the previous
snapshot and reports create/modify/delete/rename events to a handler (the
search service), which queues the matching index work.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from vault_search.search.indexer import EventKind, FileEvent
from vault_search.search.vault import FileStat, LocalVault

logger = logging.getLogger(__name__)

EventHandler = Callable[[FileEvent], Awaitable[None]]


def diff_snapshots(old: dict[str, FileStat], new: dict[str, FileStat]) -> list[FileEvent]:
    """Events that turn `old` into `new`.

    A deleted and a created file with the same mtime and size are reported
    as a rename when the pairing is unambiguous.
    """
    created = [path for path in new if path not in old]
    deleted = [path for path in old if path not in new]
    modified = [
        path
        for path in new
        if path in old and (new[path].mtime != old[path].mtime or new[path].size != old[path].size)
    ]

    events: list[FileEvent] = []
    by_signature: dict[tuple[float, int], list[str]] = {}
    for path in deleted:
        by_signature.setdefault((old[path].mtime, old[path].size), []).append(path)

    renamed_from: set[str] = set()
    for path in list(created):
        candidates = by_signature.get((new[path].mtime, new[path].size), [])
        if len(candidates) == 1 and candidates[0] not in renamed_from:
            old_path = candidates[0]
            renamed_from.add(old_path)
            created.remove(path)
            events.append(FileEvent(EventKind.RENAME, path, old_path=old_path))

    events.extend(FileEvent(EventKind.DELETE, path) for path in deleted if path not in renamed_from)
    events.extend(FileEvent(EventKind.CREATE, path) for path in created)
    events.extend(FileEvent(EventKind.MODIFY, path) for path in modified)
    return events


class VaultWatcher:
    """Periodically reports vault changes to a handler.

    The watch loop is an asyncio task; `stop()` ends it promptly.
    """

    def __init__(self, vault: LocalVault, handler: EventHandler, interval: float):
        """Initialize the watcher.

        Args:
            vault: The vault to poll.
            handler: Coroutine called once per detected event.
            interval: Poll interval in seconds. Must be > 0.
        """
        if interval <= 0:
            raise ValueError(f"Watch interval must be positive, got {interval}")

        self._vault = vault
        self._handler = handler
        self._interval = interval
        self._snapshot: dict[str, FileStat] | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Take the baseline snapshot and start the watch loop."""
        if self.running:
            logger.warning("Vault watcher already running")
            return

        self._snapshot = await asyncio.to_thread(self._vault.scan)
        self._stop_event.clear()
        self._task = asyncio.create_task(self._watch_loop(), name="vault-search-watcher")
        logger.info("Vault watcher started (interval: %ss)", self._interval)

    async def stop(self) -> None:
        if not self.running:
            return

        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Vault watcher stopped")

    async def poll_once(self) -> list[FileEvent]:
        """Diff the vault against the last snapshot and dispatch the events.

        The snapshot only advances once every event was handled; if the
        handler raises, the next poll reports the same changes again.
        """
        current = await asyncio.to_thread(self._vault.scan)
        previous = self._snapshot if self._snapshot is not None else {}

        events = diff_snapshots(previous, current)
        for event in events:
            await self._handler(event)
        self._snapshot = current
        return events

    async def _watch_loop(self) -> None:
        logger.debug("Watch loop started")

        while not self._stop_event.is_set():
            # Sleep first; the baseline snapshot was just taken
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                events = await self.poll_once()
                if events:
                    logger.info("Vault watcher: %d change(s) detected", len(events))
                else:
                    logger.debug("Vault watcher: no changes detected")
            except Exception:
                logger.exception("Error while polling the vault")

        logger.debug("Watch loop stopped")
