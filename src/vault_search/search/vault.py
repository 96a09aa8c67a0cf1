"""File system access for the indexer.

The indexer only talks to a `Vault`: something that can list files, read
them and report their modification time. `LocalVault` implements it over a
directory on disk.
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = frozenset({".md", ".markdown", ".txt", ".canvas"})


@dataclass
class FileStat:
    """Metadata about a vault file."""

    path: str  # Relative to the vault root, POSIX separators
    mtime: float
    size: int


class Vault(Protocol):
    """The narrow file system surface the indexer depends on."""

    async def list_files(self) -> list[str]: ...

    async def read(self, path: str) -> str: ...

    async def read_bytes(self, path: str) -> bytes: ...

    async def stat(self, path: str) -> FileStat | None: ...

    def is_text(self, path: str) -> bool: ...


def is_text_path(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in TEXT_EXTENSIONS


class LocalVault:
    """A vault backed by a directory tree.

    Hidden files and directories (leading '.') are skipped. Only files with
    one of `extensions` are listed.
    """

    def __init__(self, root: Path, extensions: Iterable[str] = (".md",)):
        self.root = Path(root).expanduser()
        self.extensions = frozenset(ext.lower() for ext in extensions)

    def _resolve(self, path: str) -> Path:
        """Map a vault path to disk, refusing paths that escape the root."""
        resolved = (self.root / path).resolve()
        try:
            resolved.relative_to(self.root.resolve())
        except ValueError as e:
            raise ValueError(f"Path '{path}' is outside the vault") from e
        return resolved

    def scan(self) -> dict[str, FileStat]:
        """Synchronously walk the vault and stat every matching file."""
        files: dict[str, FileStat] = {}
        if not self.root.is_dir():
            return files

        for file_path in sorted(self.root.rglob("*")):
            relative = file_path.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if file_path.suffix.lower() not in self.extensions:
                continue
            try:
                if not file_path.is_file():
                    continue
                stat = file_path.stat()
            except OSError as e:
                logger.warning("Cannot stat %s: %s", relative, e)
                continue
            key = relative.as_posix()
            files[key] = FileStat(path=key, mtime=stat.st_mtime, size=stat.st_size)
        return files

    async def list_files(self) -> list[str]:
        files = await asyncio.to_thread(self.scan)
        return list(files)

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self._resolve(path).read_text, encoding="utf-8")

    async def read_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(self._resolve(path).read_bytes)

    async def stat(self, path: str) -> FileStat | None:
        try:
            stat = await asyncio.to_thread(self._resolve(path).stat)
        except FileNotFoundError:
            return None
        return FileStat(path=path, mtime=stat.st_mtime, size=stat.st_size)

    def is_text(self, path: str) -> bool:
        return is_text_path(path)
