"""Data models for the search index."""

from dataclasses import dataclass, field
from enum import IntEnum

ROOT_FOLDER_ID = 0


class TermSource(IntEnum):
    """Where an indexed term was taken from."""

    CONTENT = 0
    FILENAME = 1


@dataclass
class Document:
    """Represents an indexed note."""

    id: int | None = None
    path: str = ""  # Relative to the vault root, POSIX separators
    file_name: str = ""  # Basename without extension, lowercase
    mtime: float = 0.0
    tags: list[str] = field(default_factory=list)
    token_count: int = 0


@dataclass
class Folder:
    """Represents a folder that contains indexed notes."""

    id: int | None = None
    path: str = ""
    name: str = ""


@dataclass
class IndexedTerm:
    """A posting: one term's occurrences in one document from one source."""

    term: str
    document_id: int
    folder_id: int = ROOT_FOLDER_ID
    source: TermSource = TermSource.CONTENT
    frequency: int = 0
    positions: list[int] = field(default_factory=list)


@dataclass
class Property:
    """A normalized key/value attribute of a document."""

    name: str
    value: str | int | float
    document_id: int | None = None
    id: int | None = None


@dataclass
class ScoredDocument:
    """A document decorated with its relevance for one query."""

    document: Document
    score: float = 0.0
    keywords_matched: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {
            "path": self.document.path,
            "file_name": self.document.file_name,
            "score": round(self.score, 4),
        }
        if self.keywords_matched:
            result["keywords_matched"] = list(self.keywords_matched)
        return result


@dataclass
class Page:
    """One page of a ranked result list."""

    items: list[ScoredDocument]
    total_count: int
    page: int
    limit: int
    total_pages: int
