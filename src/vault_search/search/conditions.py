"""Condition algebra evaluated against the document store.

Conditions are plain dataclasses; `evaluate` walks a condition tree and
returns, per matching document id, a `ConditionResult` carrying the score
contribution and the keywords that matched. Result dicts keep insertion
order, which callers use as the tie-break when sorting.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum

from vault_search.search.database import DocumentStore
from vault_search.search.models import Document, TermSource
from vault_search.search.scoring import Scoring
from vault_search.search.similarity import similarity
from vault_search.search.tokenizer import Tokenizer

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7
TERM_MATCH_THRESHOLD = 0.7
PHRASE_SCORE = 10.0

QUOTED_PATTERNS = {
    '"': re.compile(r'^"((?:[^"\\]|\\.)*)"$', re.DOTALL),
    "'": re.compile(r"^'((?:[^'\\]|\\.)*)'$", re.DOTALL),
}


@dataclass
class ConditionResult:
    document: Document
    score: float = 0.0
    keywords_matched: list[str] = field(default_factory=list)


@dataclass
class SearchContext:
    """Everything a condition needs to resolve itself."""

    store: DocumentStore
    scoring: Scoring
    content_tokenizer: Tokenizer
    name_tokenizer: Tokenizer
    # Document ids the evaluation is restricted to; None means unrestricted
    scope: set[int] | None = None
    similarity_threshold: float = SIMILARITY_THRESHOLD
    term_match_threshold: float = TERM_MATCH_THRESHOLD
    phrase_score: float = PHRASE_SCORE


@dataclass
class FilenameCondition:
    patterns: list[str]


@dataclass
class FolderCondition:
    patterns: list[str]


@dataclass
class KeywordCondition:
    keywords: list[str]


@dataclass
class PropertyFilter:
    name: str
    value: object
    operator: str = "=="


@dataclass
class PropertyCondition:
    filters: list[PropertyFilter]


@dataclass
class AndCondition:
    children: list["Condition"] = field(default_factory=list)


@dataclass
class OrCondition:
    children: list["Condition"] = field(default_factory=list)


Condition = (
    FilenameCondition
    | FolderCondition
    | KeywordCondition
    | PropertyCondition
    | AndCondition
    | OrCondition
)

Results = dict[int, ConditionResult]


class FilenameMode(str, Enum):
    EXACT = "exact"
    STARTS_WITH = "starts_with"
    CONTAINS = "contains"


def parse_filename_pattern(pattern: str) -> tuple[FilenameMode, str]:
    """`^name$` is exact, `^name` is starts-with, anything else is contains."""
    pattern = pattern.strip()
    if len(pattern) > 1 and pattern.startswith("^") and pattern.endswith("$"):
        return FilenameMode.EXACT, pattern[1:-1]
    if pattern.startswith("^"):
        return FilenameMode.STARTS_WITH, pattern[1:]
    return FilenameMode.CONTAINS, pattern


def get_quoted_query(keyword: str) -> str | None:
    """Inner text of a keyword wrapped in matching quotes, else None."""
    text = keyword.strip()
    if len(text) < 2:
        return None
    pattern = QUOTED_PATTERNS.get(text[0])
    if pattern is None:
        return None
    match = pattern.match(text)
    if match is None or not match.group(1).strip():
        return None
    return match.group(1)


def has_consecutive_terms(term_positions: dict[str, set[int]], tokens: list[str]) -> bool:
    """True if tokens occur at start, start + 1, ... for some start."""
    if not tokens or any(not term_positions.get(token) for token in tokens):
        return False
    return any(
        all(start + offset in term_positions[token] for offset, token in enumerate(tokens))
        for start in term_positions[tokens[0]]
    )


def _add(results: Results, document: Document, score: float, keyword: str | None = None) -> None:
    existing = results.get(document.id)
    if existing is None:
        existing = results[document.id] = ConditionResult(document=document)
    existing.score += score
    if keyword is not None:
        existing.keywords_matched.append(keyword)


def _in_scope(document_ids, context: SearchContext) -> set[int]:
    ids = set(document_ids)
    return ids if context.scope is None else ids & context.scope


# ----------------------------------------------------------------------
# Leaves
# ----------------------------------------------------------------------


async def _evaluate_filename(condition: FilenameCondition, context: SearchContext) -> Results:
    best: dict[int, float] = {}
    documents: dict[int, Document] = {}

    for pattern in condition.patterns:
        mode, name = parse_filename_pattern(pattern)
        terms = context.name_tokenizer.unique_terms(name)
        if not terms:
            continue

        postings = await context.store.get_terms_by_value(
            terms, source=TermSource.FILENAME, document_ids=context.scope
        )
        candidates = await context.store.get_documents_by_ids(p.document_id for p in postings)
        needle = name.strip().lower()

        for doc_id, document in candidates.items():
            if mode is FilenameMode.EXACT:
                score = similarity(needle, document.file_name)
            elif mode is FilenameMode.STARTS_WITH:
                score = 1.0 if document.file_name.startswith(needle) else 0.0
            else:
                score = 1.0 if needle in document.file_name else 0.0

            if score >= context.similarity_threshold and score > best.get(doc_id, -1.0):
                best[doc_id] = score
                documents[doc_id] = document

    ranked = sorted(best, key=lambda doc_id: best[doc_id], reverse=True)
    return {doc_id: ConditionResult(document=documents[doc_id]) for doc_id in ranked}


async def _evaluate_folder(condition: FolderCondition, context: SearchContext) -> Results:
    folders = await context.store.find_folders(condition.patterns)
    if not folders:
        logger.debug("No folders match %s", condition.patterns)
        return {}

    ids = await context.store.get_document_ids_by_folders(f.id for f in folders)
    documents = await context.store.get_documents_by_ids(_in_scope(ids, context))
    return {doc_id: ConditionResult(document=doc) for doc_id, doc in documents.items()}


async def _evaluate_property(condition: PropertyCondition, context: SearchContext) -> Results:
    matching: set[int] | None = None
    for prop in condition.filters:
        ids = await context.store.get_document_ids_by_property(prop.name, prop.value, prop.operator)
        matching = ids if matching is None else matching & ids
        if not matching:
            logger.debug("No documents for property %s %s %r", prop.name, prop.operator, prop.value)
            return {}

    if matching is None:
        return {}
    documents = await context.store.get_documents_by_ids(_in_scope(matching, context))
    return {doc_id: ConditionResult(document=doc) for doc_id, doc in documents.items()}


async def _match_phrase(phrase: str, context: SearchContext, results: Results) -> None:
    tokens = context.content_tokenizer.term_sequence(phrase)
    if not tokens:
        return

    postings = await context.store.get_terms_by_value(
        tokens, source=TermSource.CONTENT, document_ids=context.scope
    )
    positions: dict[int, dict[str, set[int]]] = defaultdict(dict)
    for posting in postings:
        positions[posting.document_id][posting.term] = set(posting.positions)

    matched = [doc_id for doc_id, terms in positions.items() if has_consecutive_terms(terms, tokens)]
    documents = await context.store.get_documents_by_ids(matched)
    for doc_id in matched:
        if doc_id in documents:
            _add(results, documents[doc_id], context.phrase_score, phrase)


async def _match_terms(keyword: str, context: SearchContext, results: Results) -> None:
    terms = context.content_tokenizer.unique_terms(keyword)
    if not terms:
        return

    postings = await context.store.get_terms_by_value(
        terms, source=TermSource.CONTENT, document_ids=context.scope
    )
    found: dict[int, set[str]] = defaultdict(set)
    for posting in postings:
        found[posting.document_id].add(posting.term)

    qualifying = [
        doc_id
        for doc_id, doc_terms in found.items()
        if len(doc_terms) / len(terms) >= context.term_match_threshold
    ]
    if not qualifying:
        return

    documents = await context.store.get_documents_by_ids(qualifying)
    scores = await context.scoring.calculate_document_scores(documents.values(), terms)
    for doc_id in qualifying:
        if doc_id in documents:
            _add(results, documents[doc_id], scores[doc_id].score, keyword)


async def _evaluate_keyword(condition: KeywordCondition, context: SearchContext) -> Results:
    results: Results = {}
    for keyword in condition.keywords:
        phrase = get_quoted_query(keyword)
        if phrase is not None:
            await _match_phrase(phrase, context, results)
        else:
            await _match_terms(keyword, context, results)
    return results


# ----------------------------------------------------------------------
# Composites
# ----------------------------------------------------------------------


async def _evaluate_and(condition: AndCondition, context: SearchContext) -> Results:
    combined: Results | None = None
    scope = context.scope

    for child in condition.children:
        results = await evaluate(child, replace(context, scope=scope))
        if combined is None:
            combined = results
        else:
            merged: Results = {}
            for doc_id, result in combined.items():
                other = results.get(doc_id)
                if other is not None:
                    result.score += other.score
                    result.keywords_matched.extend(other.keywords_matched)
                    merged[doc_id] = result
            combined = merged

        if not combined:
            logger.warning(
                "No documents left after %s, skipping remaining conditions",
                type(child).__name__,
            )
            return {}
        scope = set(combined)

    return combined or {}


async def _evaluate_or(condition: OrCondition, context: SearchContext) -> Results:
    combined: Results = {}
    for child in condition.children:
        for doc_id, result in (await evaluate(child, context)).items():
            existing = combined.get(doc_id)
            if existing is None:
                combined[doc_id] = result
            else:
                existing.score += result.score
                existing.keywords_matched.extend(result.keywords_matched)
    return combined


async def evaluate(condition: Condition, context: SearchContext) -> Results:
    """Resolve a condition tree to its matching documents."""
    if isinstance(condition, AndCondition):
        return await _evaluate_and(condition, context)
    if isinstance(condition, OrCondition):
        return await _evaluate_or(condition, context)
    if isinstance(condition, KeywordCondition):
        return await _evaluate_keyword(condition, context)
    if isinstance(condition, PropertyCondition):
        return await _evaluate_property(condition, context)
    if isinstance(condition, FolderCondition):
        return await _evaluate_folder(condition, context)
    if isinstance(condition, FilenameCondition):
        return await _evaluate_filename(condition, context)
    raise TypeError(f"Unsupported condition: {condition!r}")
