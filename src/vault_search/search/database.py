"""SQLite document store for the search index.

The store owns every persisted entity: documents, folders, term postings and
properties. Each public call is atomic on its own; nothing spans calls, so a
failure between calls can leave a document without postings until it is
indexed again.
"""

import asyncio
import json
import logging
import operator as op
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

import aiosqlite

from vault_search.search.errors import InvalidQueryError
from vault_search.search.models import (
    ROOT_FOLDER_ID,
    Document,
    Folder,
    IndexedTerm,
    Property,
    TermSource,
)
from vault_search.search.properties import (
    coerce_stored,
    equality_candidates,
    normalize_name,
    resolve_comparable,
    stored_comparable,
)

logger = logging.getLogger(__name__)

META_SQL = """
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

# Ordered, additive migrations. Index i upgrades a database to version i + 1.
MIGRATIONS: tuple[str, ...] = (
    """
    -- v1: documents, folders and term postings
    CREATE TABLE IF NOT EXISTS folders (
        id    INTEGER PRIMARY KEY,
        path  TEXT NOT NULL UNIQUE,
        name  TEXT NOT NULL
    );

    INSERT OR IGNORE INTO folders (id, path, name) VALUES (0, '', '/');

    CREATE TABLE IF NOT EXISTS documents (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        path         TEXT NOT NULL UNIQUE,
        file_name    TEXT NOT NULL,
        mtime        REAL NOT NULL DEFAULT 0,
        tags         TEXT NOT NULL DEFAULT '[]',
        token_count  INTEGER NOT NULL DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS idx_documents_file_name ON documents(file_name);

    CREATE TABLE IF NOT EXISTS terms (
        term         TEXT NOT NULL,
        document_id  INTEGER NOT NULL,
        folder_id    INTEGER NOT NULL DEFAULT 0,
        source       INTEGER NOT NULL DEFAULT 0,
        frequency    INTEGER NOT NULL,
        positions    TEXT NOT NULL,
        PRIMARY KEY (term, document_id, source)
    );

    CREATE INDEX IF NOT EXISTS idx_terms_document ON terms(document_id);
    CREATE INDEX IF NOT EXISTS idx_terms_folder ON terms(folder_id);
    """,
    """
    -- v2: document properties (untyped value column keeps numbers numeric)
    CREATE TABLE IF NOT EXISTS properties (
        id           INTEGER PRIMARY KEY AUTOINCREMENT,
        document_id  INTEGER NOT NULL,
        name         TEXT NOT NULL,
        value
    );

    CREATE INDEX IF NOT EXISTS idx_properties_name_value ON properties(name, value);
    CREATE INDEX IF NOT EXISTS idx_properties_document ON properties(document_id);
    """,
)

SCHEMA_VERSION = len(MIGRATIONS)

RANGE_OPERATORS = {"<": op.lt, "<=": op.le, ">": op.gt, ">=": op.ge}
OPERATORS = frozenset({"==", "!=", *RANGE_OPERATORS})

# Stay well below SQLite's bound-parameter limit
MAX_PARAMS = 500


def _placeholders(count: int) -> str:
    return ", ".join("?" * count)


def _chunks(values: Sequence[Any], size: int = MAX_PARAMS) -> Iterable[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _row_to_document(row: aiosqlite.Row) -> Document:
    return Document(
        id=row["id"],
        path=row["path"],
        file_name=row["file_name"],
        mtime=row["mtime"],
        tags=json.loads(row["tags"]) if row["tags"] else [],
        token_count=row["token_count"],
    )


def _row_to_term(row: aiosqlite.Row) -> IndexedTerm:
    return IndexedTerm(
        term=row["term"],
        document_id=row["document_id"],
        folder_id=row["folder_id"],
        source=TermSource(row["source"]),
        frequency=row["frequency"],
        positions=json.loads(row["positions"]),
    )


def _normalize_prefix(folder: str) -> str:
    return folder.strip().strip("/")


class DocumentStore:
    """Async SQLite store for documents, folders, postings and properties."""

    def __init__(self, db_path: Path, excluded_folders: Iterable[str] = ()):
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None
        self._connect_lock = asyncio.Lock()
        self._excluded: list[str] = []
        self.update_excluded_folders(excluded_folders)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _get_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            async with self._connect_lock:
                if self._connection is None:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    connection = await aiosqlite.connect(self.db_path)
                    connection.row_factory = aiosqlite.Row
                    self._connection = connection
        return self._connection

    async def initialize(self) -> None:
        """Open the database and bring its schema up to date."""
        conn = await self._get_connection()
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")
        await conn.execute("PRAGMA synchronous = NORMAL")
        await conn.executescript(META_SQL)
        await conn.commit()

        current = await self.get_schema_version()
        for version in range(current, SCHEMA_VERSION):
            logger.info("Migrating search index schema to v%d", version + 1)
            await conn.executescript(MIGRATIONS[version])
            await conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', ?)",
                (str(version + 1),),
            )
            await conn.commit()

        logger.debug("Document store ready at %s (schema v%d)", self.db_path, SCHEMA_VERSION)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def get_schema_version(self) -> int:
        conn = await self._get_connection()
        async with conn.execute(
            "SELECT value FROM meta WHERE key = 'schema_version'"
        ) as cursor:
            row = await cursor.fetchone()
        return int(row["value"]) if row else 0

    async def clear(self) -> None:
        """Remove all indexed data, keeping the schema and the root folder."""
        conn = await self._get_connection()
        await conn.execute("DELETE FROM properties")
        await conn.execute("DELETE FROM terms")
        await conn.execute("DELETE FROM documents")
        await conn.execute("DELETE FROM folders WHERE id != ?", (ROOT_FOLDER_ID,))
        await conn.commit()

    # ------------------------------------------------------------------
    # Exclusion
    # ------------------------------------------------------------------

    @property
    def excluded_folders(self) -> list[str]:
        return list(self._excluded)

    def update_excluded_folders(self, folders: Iterable[str]) -> None:
        self._excluded = [p for p in (_normalize_prefix(f) for f in folders) if p]

    def is_excluded(self, path: str) -> bool:
        """True if path is an excluded folder or lies inside one."""
        path = path.strip("/")
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self._excluded)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def store_document(self, document: Document) -> int:
        """Insert a new document and return its id."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO documents (path, file_name, mtime, tags, token_count)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                document.path,
                document.file_name,
                document.mtime,
                json.dumps(document.tags),
                document.token_count,
            ),
        )
        await conn.commit()
        document.id = cursor.lastrowid
        return document.id

    async def update_document(self, document: Document) -> None:
        if document.id is None:
            raise ValueError("Cannot update a document without an id")
        conn = await self._get_connection()
        await conn.execute(
            """
            UPDATE documents
            SET path = ?, file_name = ?, mtime = ?, tags = ?, token_count = ?
            WHERE id = ?
            """,
            (
                document.path,
                document.file_name,
                document.mtime,
                json.dumps(document.tags),
                document.token_count,
                document.id,
            ),
        )
        await conn.commit()

    async def get_document_by_path(self, path: str) -> Document | None:
        conn = await self._get_connection()
        async with conn.execute("SELECT * FROM documents WHERE path = ?", (path,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_document(row) if row else None

    async def get_document_by_id(self, document_id: int) -> Document | None:
        conn = await self._get_connection()
        async with conn.execute(
            "SELECT * FROM documents WHERE id = ?", (document_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_document(row) if row else None

    async def get_documents_by_ids(self, document_ids: Iterable[int]) -> dict[int, Document]:
        ids = sorted(set(document_ids))
        conn = await self._get_connection()
        documents: dict[int, Document] = {}
        for chunk in _chunks(ids):
            async with conn.execute(
                f"SELECT * FROM documents WHERE id IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            ) as cursor:
                async for row in cursor:
                    documents[row["id"]] = _row_to_document(row)
        return documents

    async def get_documents_by_name(self, file_name: str) -> list[Document]:
        """Documents whose file name (without extension) matches exactly."""
        conn = await self._get_connection()
        async with conn.execute(
            "SELECT * FROM documents WHERE file_name = ? ORDER BY path",
            (file_name.lower(),),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_document(row) for row in rows]

    async def get_all_documents(self) -> list[Document]:
        conn = await self._get_connection()
        async with conn.execute("SELECT * FROM documents ORDER BY path") as cursor:
            rows = await cursor.fetchall()
        return [_row_to_document(row) for row in rows]

    async def delete_document(self, document_id: int) -> None:
        conn = await self._get_connection()
        await conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        await conn.commit()

    async def count_documents(self) -> int:
        conn = await self._get_connection()
        async with conn.execute("SELECT COUNT(*) AS n FROM documents") as cursor:
            row = await cursor.fetchone()
        return row["n"]

    async def get_average_token_count(self) -> float:
        conn = await self._get_connection()
        async with conn.execute("SELECT AVG(token_count) AS avg FROM documents") as cursor:
            row = await cursor.fetchone()
        return float(row["avg"] or 0.0)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def get_folder_by_path(self, path: str) -> Folder | None:
        conn = await self._get_connection()
        async with conn.execute("SELECT * FROM folders WHERE path = ?", (path,)) as cursor:
            row = await cursor.fetchone()
        return Folder(id=row["id"], path=row["path"], name=row["name"]) if row else None

    async def store_folder(self, folder: Folder) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "INSERT INTO folders (path, name) VALUES (?, ?)", (folder.path, folder.name)
        )
        await conn.commit()
        folder.id = cursor.lastrowid
        return folder.id

    async def get_or_create_folder(self, path: str) -> int:
        """Return the folder id for a path; the vault root is always 0."""
        path = path.strip("/")
        if not path:
            return ROOT_FOLDER_ID
        existing = await self.get_folder_by_path(path)
        if existing is not None:
            return existing.id
        return await self.store_folder(Folder(path=path, name=path.rsplit("/", 1)[-1]))

    async def get_all_folders(self) -> list[Folder]:
        conn = await self._get_connection()
        async with conn.execute("SELECT * FROM folders ORDER BY path") as cursor:
            rows = await cursor.fetchall()
        return [Folder(id=row["id"], path=row["path"], name=row["name"]) for row in rows]

    async def find_folders(self, patterns: Iterable[str]) -> list[Folder]:
        """Folders whose name or path contains any pattern, case-insensitively."""
        needles = []
        for pattern in patterns:
            needle = pattern.strip().lower()
            if needle != "/":
                needle = needle.strip("/")
            if needle:
                needles.append(needle)
        if not needles:
            return []

        return [
            folder
            for folder in await self.get_all_folders()
            if any(n in folder.name.lower() or n in folder.path.lower() for n in needles)
        ]

    async def count_documents_in_folder(self, folder_path: str) -> int:
        """Count documents directly inside a folder (not in subfolders)."""
        prefix = folder_path.strip("/") + "/"
        conn = await self._get_connection()
        async with conn.execute(
            """
            SELECT COUNT(*) AS n FROM documents
            WHERE substr(path, 1, ?) = ? AND instr(substr(path, ?), '/') = 0
            """,
            (len(prefix), prefix, len(prefix) + 1),
        ) as cursor:
            row = await cursor.fetchone()
        return row["n"]

    async def delete_folder(self, folder_id: int) -> None:
        if folder_id == ROOT_FOLDER_ID:
            return
        conn = await self._get_connection()
        await conn.execute("DELETE FROM folders WHERE id = ?", (folder_id,))
        await conn.commit()

    async def count_folders(self) -> int:
        conn = await self._get_connection()
        async with conn.execute("SELECT COUNT(*) AS n FROM folders") as cursor:
            row = await cursor.fetchone()
        return row["n"]

    # ------------------------------------------------------------------
    # Term postings
    # ------------------------------------------------------------------

    async def store_terms(self, terms: Sequence[IndexedTerm]) -> None:
        if not terms:
            return
        conn = await self._get_connection()
        await conn.executemany(
            """
            INSERT OR REPLACE INTO terms
                (term, document_id, folder_id, source, frequency, positions)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    t.term,
                    t.document_id,
                    t.folder_id,
                    int(t.source),
                    t.frequency,
                    json.dumps(t.positions),
                )
                for t in terms
            ],
        )
        await conn.commit()

    async def delete_terms_by_document(self, document_id: int) -> None:
        conn = await self._get_connection()
        await conn.execute("DELETE FROM terms WHERE document_id = ?", (document_id,))
        await conn.commit()

    async def get_terms_by_document(self, document_id: int) -> list[IndexedTerm]:
        conn = await self._get_connection()
        async with conn.execute(
            "SELECT * FROM terms WHERE document_id = ? ORDER BY source, term",
            (document_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_term(row) for row in rows]

    async def get_terms_by_value(
        self,
        terms: Iterable[str],
        source: TermSource | None = None,
        document_ids: set[int] | None = None,
        folder_ids: set[int] | None = None,
    ) -> list[IndexedTerm]:
        """Postings for an exact set of terms, optionally scoped.

        document_ids / folder_ids of None mean "no restriction"; an empty set
        matches nothing.
        """
        values = sorted(set(terms))
        if not values or document_ids == set() or folder_ids == set():
            return []

        # Term and folder lists share one statement's parameter budget
        size = MAX_PARAMS // 2
        folder_chunks: list[Sequence[int] | None] = (
            [None] if folder_ids is None else list(_chunks(sorted(folder_ids), size))
        )

        conn = await self._get_connection()
        postings: list[IndexedTerm] = []
        for value_chunk in _chunks(values, size):
            for folder_chunk in folder_chunks:
                sql = f"SELECT * FROM terms WHERE term IN ({_placeholders(len(value_chunk))})"
                params: list[Any] = list(value_chunk)
                if source is not None:
                    sql += " AND source = ?"
                    params.append(int(source))
                if folder_chunk is not None:
                    sql += f" AND folder_id IN ({_placeholders(len(folder_chunk))})"
                    params.extend(folder_chunk)

                async with conn.execute(sql, params) as cursor:
                    async for row in cursor:
                        postings.append(_row_to_term(row))

        if document_ids is not None:
            postings = [p for p in postings if p.document_id in document_ids]
        return postings

    async def get_document_ids_by_folders(self, folder_ids: Iterable[int]) -> set[int]:
        ids = sorted(set(folder_ids))
        conn = await self._get_connection()
        document_ids: set[int] = set()
        for chunk in _chunks(ids):
            async with conn.execute(
                f"SELECT DISTINCT document_id FROM terms "
                f"WHERE folder_id IN ({_placeholders(len(chunk))})",
                tuple(chunk),
            ) as cursor:
                async for row in cursor:
                    document_ids.add(row["document_id"])
        return document_ids

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    async def store_properties(self, document_id: int, properties: Sequence[Property]) -> None:
        if not properties:
            return
        conn = await self._get_connection()
        await conn.executemany(
            "INSERT INTO properties (document_id, name, value) VALUES (?, ?, ?)",
            [(document_id, normalize_name(p.name), p.value) for p in properties],
        )
        await conn.commit()

    async def delete_properties_by_document(self, document_id: int) -> None:
        conn = await self._get_connection()
        await conn.execute("DELETE FROM properties WHERE document_id = ?", (document_id,))
        await conn.commit()

    async def get_properties_by_document(self, document_id: int) -> list[Property]:
        conn = await self._get_connection()
        async with conn.execute(
            "SELECT * FROM properties WHERE document_id = ? ORDER BY id", (document_id,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            Property(id=row["id"], document_id=row["document_id"], name=row["name"], value=row["value"])
            for row in rows
        ]

    async def get_all_property_names(self) -> list[str]:
        conn = await self._get_connection()
        async with conn.execute("SELECT DISTINCT name FROM properties ORDER BY name") as cursor:
            rows = await cursor.fetchall()
        return [row["name"] for row in rows]

    async def get_document_ids_by_property(
        self, name: str, value: Any, operator: str = "=="
    ) -> set[int]:
        """Document ids whose property satisfies `name <operator> value`.

        Equality checks every representation of the value (string, number,
        parsed date). Range operators need a numeric or date value; anything
        else yields an empty set.
        """
        if operator not in OPERATORS:
            raise InvalidQueryError(f"Unknown property operator: {operator!r}")

        key = normalize_name(name)

        if operator == "==":
            candidates = equality_candidates(key, value)
            if not candidates:
                return set()
            conn = await self._get_connection()
            async with conn.execute(
                "SELECT DISTINCT document_id FROM properties "
                f"WHERE name = ? AND value IN ({_placeholders(len(candidates))})",
                [key, *candidates],
            ) as cursor:
                rows = await cursor.fetchall()
            return {row["document_id"] for row in rows}

        comparable = resolve_comparable(value)
        if comparable is None:
            logger.warning(
                "Property %s %s %r: value is neither numeric nor a date", key, operator, value
            )
            return set()

        # Values are untyped; numeric strings compare as numbers
        rows = await self._property_rows(key)
        if operator == "!=":
            return {row["document_id"] for row in rows if coerce_stored(row["value"]) != comparable}

        compare = RANGE_OPERATORS[operator]
        matched: set[int] = set()
        for row in rows:
            stored = stored_comparable(row["value"], comparable)
            if stored is not None and compare(stored, comparable):
                matched.add(row["document_id"])
        return matched

    async def _property_rows(self, key: str) -> list[aiosqlite.Row]:
        conn = await self._get_connection()
        async with conn.execute(
            "SELECT document_id, value FROM properties WHERE name = ?", (key,)
        ) as cursor:
            return await cursor.fetchall()
