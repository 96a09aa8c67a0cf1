"""
Search engine for vaultsearch.

An inverted index over vault notes persisted in SQLite, kept current by a
reactive indexer, queried through a boolean condition algebra and ranked
with BM25 plus proximity, coverage and filename bonuses.
"""

from vault_search.search.conditions import (
    AndCondition,
    FilenameCondition,
    FolderCondition,
    KeywordCondition,
    OrCondition,
    PropertyCondition,
    PropertyFilter,
    SearchContext,
)
from vault_search.search.database import DocumentStore
from vault_search.search.errors import ConfigurationError, InvalidQueryError, SearchError
from vault_search.search.indexer import EventKind, FileEvent, Indexer
from vault_search.search.models import Document, Folder, IndexedTerm, Page, Property, ScoredDocument, TermSource
from vault_search.search.query import QueryBuilder, QueryExecutor, QueryOperation
from vault_search.search.scoring import Scoring, ScoringConfig
from vault_search.search.service import SearchService, paginate
from vault_search.search.tokenizer import Token, Tokenizer, content_tokenizer, name_tokenizer
from vault_search.search.vault import FileStat, LocalVault, Vault

__all__ = [
    "AndCondition",
    "ConfigurationError",
    "Document",
    "DocumentStore",
    "EventKind",
    "FileEvent",
    "FileStat",
    "FilenameCondition",
    "Folder",
    "FolderCondition",
    "IndexedTerm",
    "Indexer",
    "InvalidQueryError",
    "KeywordCondition",
    "LocalVault",
    "OrCondition",
    "Page",
    "Property",
    "PropertyCondition",
    "PropertyFilter",
    "QueryBuilder",
    "QueryExecutor",
    "QueryOperation",
    "ScoredDocument",
    "Scoring",
    "ScoringConfig",
    "SearchContext",
    "SearchError",
    "SearchService",
    "TermSource",
    "Token",
    "Tokenizer",
    "Vault",
    "content_tokenizer",
    "name_tokenizer",
    "paginate",
]
