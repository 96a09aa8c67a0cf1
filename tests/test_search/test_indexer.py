"""Tests for the vault indexer."""

import asyncio
import logging
import time
from pathlib import Path

import fitz
import pytest
import pytest_asyncio

from vault_search.search.database import DocumentStore
from vault_search.search.indexer import Action, EventKind, FileEvent, Indexer, contains_command
from vault_search.search.models import TermSource
from vault_search.search.vault import LocalVault


def write(root: Path, path: str, content: str) -> None:
    file_path = root / path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content)


def write_pdf(root: Path, path: str, text: str) -> None:
    document = fitz.open()
    page = document.new_page()
    page.insert_text((72, 72), text)
    (root / path).write_bytes(document.tobytes())
    document.close()


async def wait_for_condition(condition_fn, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition_fn():
            return True
        await asyncio.sleep(interval)
    return False


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    document_store = DocumentStore(tmp_path / "index.db")
    await document_store.initialize()
    yield document_store
    await document_store.close()


@pytest_asyncio.fixture
async def indexer(vault_root: Path, store: DocumentStore):
    idx = Indexer(LocalVault(vault_root), store)
    idx.start()
    yield idx
    await idx.close()


async def snapshot(store: DocumentStore, path: str):
    document = await store.get_document_by_path(path)
    terms = await store.get_terms_by_document(document.id)
    properties = await store.get_properties_by_document(document.id)
    return (
        document,
        [(t.term, t.source, t.frequency, t.positions) for t in terms],
        sorted((p.name, str(p.value)) for p in properties),
    )


class TestIndexFile:
    @pytest.mark.asyncio
    async def test_indexes_content_and_file_name(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "notes/alpha.md", "---\nstatus: draft\n---\nthe quick brown fox")

        assert await indexer.index_file("notes/alpha.md") is True

        document = await store.get_document_by_path("notes/alpha.md")
        assert document.file_name == "alpha"
        assert document.token_count == 4

        terms = await store.get_terms_by_document(document.id)
        content = {t.term: t.positions for t in terms if t.source == TermSource.CONTENT}
        filename = {t.term for t in terms if t.source == TermSource.FILENAME}
        assert content == {"quick": [0], "brown": [1], "fox": [2]}
        assert filename == {"alpha"}
        assert "status" not in content

        folder = await store.get_folder_by_path("notes")
        assert all(t.folder_id == folder.id for t in terms)
        assert await store.get_document_ids_by_property("status", "draft") == {document.id}

    @pytest.mark.asyncio
    async def test_reindex_is_idempotent(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "a.md", "---\ntags: [x]\npriority: 2\n---\nalpha beta alpha #gamma")

        await indexer.index_file("a.md")
        first = await snapshot(store, "a.md")
        await indexer.index_file("a.md")
        second = await snapshot(store, "a.md")

        assert first == second
        assert await store.count_documents() == 1

    @pytest.mark.asyncio
    async def test_reindex_replaces_old_terms(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "a.md", "old words")
        await indexer.index_file("a.md")
        write(vault_root, "a.md", "new content")
        await indexer.index_file("a.md")

        assert await store.get_terms_by_value(["old"]) == []
        assert len(await store.get_terms_by_value(["new"])) == 1

    @pytest.mark.asyncio
    async def test_skips_command_notes(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "cmd.md", "/search something")
        assert await indexer.index_file("cmd.md") is False
        assert await store.get_document_by_path("cmd.md") is None

    @pytest.mark.asyncio
    async def test_command_note_removes_stale_entry(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "cmd.md", "regular note")
        await indexer.index_file("cmd.md")
        write(vault_root, "cmd.md", "/create a new note")
        await indexer.index_file("cmd.md")
        assert await store.get_document_by_path("cmd.md") is None

    @pytest.mark.asyncio
    async def test_missing_file_is_removed(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "gone.md", "soon gone")
        await indexer.index_file("gone.md")
        (vault_root / "gone.md").unlink()

        assert await indexer.index_file("gone.md") is True
        assert await store.get_document_by_path("gone.md") is None

    @pytest.mark.asyncio
    async def test_excluded_path_is_not_indexed(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        store.update_excluded_folders(["Private"])
        write(vault_root, "Private/secret.md", "secret")
        assert await indexer.index_file("Private/secret.md") is False
        assert await store.count_documents() == 0

    @pytest.mark.asyncio
    async def test_non_text_file_is_indexed_by_name(self, vault_root: Path, store: DocumentStore):
        (vault_root / "Diagram.png").write_bytes(b"\x89PNG")
        idx = Indexer(LocalVault(vault_root, extensions=(".md", ".png")), store)
        try:
            await idx.index_file("Diagram.png")
        finally:
            await idx.close()

        document = await store.get_document_by_path("Diagram.png")
        assert document.file_name == "diagram"
        assert await store.get_document_ids_by_property("file_category", "image") == {document.id}

    @pytest.mark.asyncio
    async def test_bad_frontmatter_value_still_indexes(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "report.md", "---\ndue: 2024-13-45\n---\nquarterly report")

        assert await indexer.index_file("report.md") is True

        document = await store.get_document_by_path("report.md")
        expected = {t.term for t in indexer.content_tokenizer.tokenize("quarterly report")}
        postings = await store.get_terms_by_value(expected, source=TermSource.CONTENT)
        assert {p.term for p in postings} == expected
        assert {p.document_id for p in postings} == {document.id}

    @pytest.mark.asyncio
    async def test_pdf_text_is_indexed(self, vault_root: Path, store: DocumentStore):
        write_pdf(vault_root, "Report.pdf", "Quarterly revenue forecast")
        idx = Indexer(LocalVault(vault_root, extensions=(".md", ".pdf")), store)
        try:
            assert await idx.index_file("Report.pdf") is True
            expected = {t.term for t in idx.content_tokenizer.tokenize("Quarterly revenue forecast")}
        finally:
            await idx.close()

        document = await store.get_document_by_path("Report.pdf")
        terms = await store.get_terms_by_document(document.id)
        assert expected <= {t.term for t in terms if t.source == TermSource.CONTENT}
        assert await store.get_document_ids_by_property("file_category", "document") == {document.id}

    @pytest.mark.asyncio
    async def test_unreadable_pdf_is_indexed_by_name(self, vault_root: Path, store: DocumentStore):
        (vault_root / "Broken.pdf").write_bytes(b"not a pdf")
        idx = Indexer(LocalVault(vault_root, extensions=(".pdf",)), store)
        try:
            assert await idx.index_file("Broken.pdf") is True
            expected = {t.term for t in idx.content_tokenizer.tokenize("Broken")}
        finally:
            await idx.close()

        document = await store.get_document_by_path("Broken.pdf")
        terms = await store.get_terms_by_document(document.id)
        assert {t.term for t in terms if t.source == TermSource.CONTENT} == expected


class TestRemoval:
    @pytest.mark.asyncio
    async def test_remove_from_index(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "a.md", "alpha")
        await indexer.index_file("a.md")
        document = await store.get_document_by_path("a.md")

        assert await indexer.remove_from_index("a.md") is True
        assert await store.get_document_by_path("a.md") is None
        assert await store.get_terms_by_document(document.id) == []
        assert await store.get_properties_by_document(document.id) == []
        assert await indexer.remove_from_index("a.md") is False

    @pytest.mark.asyncio
    async def test_empty_folder_is_cleaned_up(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "Work/a.md", "alpha")
        write(vault_root, "Work/b.md", "beta")
        await indexer.index_file("Work/a.md")
        await indexer.index_file("Work/b.md")

        await indexer.remove_from_index("Work/a.md")
        assert await store.get_folder_by_path("Work") is not None

        await indexer.remove_from_index("Work/b.md")
        assert await store.get_folder_by_path("Work") is None
        assert await store.count_folders() == 1


class TestEvents:
    @pytest.mark.asyncio
    async def test_create_and_delete_events(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "a.md", "alpha")
        await indexer.handle_event(FileEvent(EventKind.CREATE, "a.md"))
        await indexer.join()
        assert await store.get_document_by_path("a.md") is not None

        await indexer.handle_event(FileEvent(EventKind.DELETE, "a.md"))
        await indexer.join()
        assert await store.get_document_by_path("a.md") is None

    @pytest.mark.asyncio
    async def test_rename_event(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        write(vault_root, "old.md", "content here")
        await indexer.index_file("old.md")
        (vault_root / "old.md").rename(vault_root / "new.md")

        await indexer.handle_event(FileEvent(EventKind.RENAME, "new.md", old_path="old.md"))
        await indexer.join()

        assert await store.get_document_by_path("old.md") is None
        document = await store.get_document_by_path("new.md")
        filename_terms = {
            t.term for t in await store.get_terms_by_document(document.id) if t.source == TermSource.FILENAME
        }
        assert filename_terms == {"new"}

    @pytest.mark.asyncio
    async def test_events_for_excluded_paths_are_ignored(
        self, indexer: Indexer, store: DocumentStore, vault_root: Path
    ):
        store.update_excluded_folders(["Private"])
        write(vault_root, "Private/a.md", "secret")
        await indexer.handle_event(FileEvent(EventKind.CREATE, "Private/a.md"))
        assert indexer.pending_count() == 0

    @pytest.mark.asyncio
    async def test_unchanged_active_file_is_not_reindexed(
        self, indexer: Indexer, store: DocumentStore, vault_root: Path
    ):
        write(vault_root, "active.md", "one two three")
        await indexer.index_file("active.md")
        await indexer.set_active_file("active.md")

        await indexer.handle_event(FileEvent(EventKind.MODIFY, "active.md"))
        assert indexer.pending_count() == 0

        write(vault_root, "active.md", "one two three four")
        await indexer.handle_event(FileEvent(EventKind.MODIFY, "active.md"))
        assert indexer.pending_count() == 1
        await indexer.join()
        assert len(await store.get_terms_by_value(["four"])) == 1


class TestQueue:
    @pytest.mark.asyncio
    async def test_pending_work_is_deduplicated(self, indexer: Indexer, vault_root: Path):
        write(vault_root, "a.md", "alpha")
        first = indexer.enqueue("a.md", Action.INDEX)
        second = indexer.enqueue("a.md", Action.REMOVE)

        assert indexer.pending_count() == 1
        # Latest action wins: the file was never indexed, so nothing changes
        assert await first is False
        assert await second is False

    @pytest.mark.asyncio
    async def test_operations_run_one_at_a_time_in_order(self, vault_root: Path, store: DocumentStore):
        class GatedVault(LocalVault):
            def __init__(self, root: Path):
                super().__init__(root)
                self.gate = asyncio.Event()
                self.log: list[tuple[str, str]] = []
                self.active = 0
                self.max_active = 0

            async def read(self, path: str) -> str:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
                self.log.append(("enter", path))
                try:
                    await self.gate.wait()
                    return await super().read(path)
                finally:
                    self.log.append(("exit", path))
                    self.active -= 1

        paths = ["c.md", "a.md", "b.md"]
        for path in paths:
            write(vault_root, path, f"note {path}")

        vault = GatedVault(vault_root)
        idx = Indexer(vault, store)
        finished: list[str] = []
        try:
            futures = [idx.enqueue(path) for path in paths]
            for future, path in zip(futures, paths):
                future.add_done_callback(lambda _, path=path: finished.append(path))

            assert await wait_for_condition(lambda: vault.log)
            await asyncio.sleep(0.05)
            # The first operation holds the queue while it is blocked
            assert vault.log == [("enter", "c.md")]

            vault.gate.set()
            assert await asyncio.gather(*futures) == [True, True, True]
        finally:
            await idx.close()

        assert vault.max_active == 1
        assert vault.log == [
            ("enter", "c.md"),
            ("exit", "c.md"),
            ("enter", "a.md"),
            ("exit", "a.md"),
            ("enter", "b.md"),
            ("exit", "b.md"),
        ]
        assert finished == paths

    @pytest.mark.asyncio
    async def test_error_does_not_stop_the_queue(self, vault_root: Path, store: DocumentStore, caplog):
        class FlakyVault(LocalVault):
            async def read(self, path: str) -> str:
                if path == "bad.md":
                    raise OSError("disk error")
                return await super().read(path)

        write(vault_root, "bad.md", "broken")
        write(vault_root, "good.md", "works")
        idx = Indexer(FlakyVault(vault_root), store)
        try:
            with caplog.at_level(logging.ERROR):
                queued = await idx.index_all_files()
                await idx.join()
        finally:
            await idx.close()

        assert queued == 2
        assert await store.get_document_by_path("bad.md") is None
        assert await store.get_document_by_path("good.md") is not None
        assert "Error while processing bad.md" in caplog.text

    @pytest.mark.asyncio
    async def test_index_all_files_removes_stale_documents(
        self, indexer: Indexer, store: DocumentStore, vault_root: Path
    ):
        write(vault_root, "keep.md", "keep")
        write(vault_root, "drop.md", "drop")
        await indexer.index_all_files()
        await indexer.join()
        assert await store.count_documents() == 2

        (vault_root / "drop.md").unlink()
        await indexer.index_all_files()
        await indexer.join()
        assert [d.path for d in await store.get_all_documents()] == ["keep.md"]

    @pytest.mark.asyncio
    async def test_index_all_files_skips_excluded(self, indexer: Indexer, store: DocumentStore, vault_root: Path):
        store.update_excluded_folders(["node_modules"])
        write(vault_root, "a.md", "alpha")
        write(vault_root, "node_modules/pkg/readme.md", "package")

        assert await indexer.index_all_files() == 1
        await indexer.join()
        assert [d.path for d in await store.get_all_documents()] == ["a.md"]

    @pytest.mark.asyncio
    async def test_enqueue_after_close_raises(self, indexer: Indexer):
        await indexer.close()
        with pytest.raises(RuntimeError):
            indexer.enqueue("a.md")


class TestCommandDetection:
    def test_contains_command(self):
        assert contains_command("/search foo")
        assert contains_command("intro\n  /stop")
        assert not contains_command("a path like notes/search.md")
        assert not contains_command("/searching for meaning")
