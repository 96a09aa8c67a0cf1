"""BM25 relevance scoring with coverage, proximity and filename bonuses.

    final = base * (1 + coverage + proximity + filename)

`base` is the BM25 sum over matched query terms (filename postings boosted).
Coverage rewards matching more distinct query terms, proximity rewards terms
that cluster in the content, and the filename bonus rewards any query term
found in the file name.
"""

import logging
import math
from collections import defaultdict, deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from vault_search.search.database import DocumentStore
from vault_search.search.errors import ConfigurationError
from vault_search.search.models import Document, TermSource

logger = logging.getLogger(__name__)


@dataclass
class ScoringConfig:
    """Tunable scoring parameters."""

    k1: float = 1.5
    b: float = 0.75
    filename_boost: float = 2.0
    max_coverage_bonus: float = 0.5
    max_proximity_bonus: float = 0.5
    filename_match_bonus: float = 0.5
    proximity_threshold: int = 10

    def __post_init__(self) -> None:
        if self.k1 < 0:
            raise ConfigurationError(f"k1 must be >= 0, got {self.k1}")
        if not 0.0 <= self.b <= 1.0:
            raise ConfigurationError(f"b must be between 0 and 1, got {self.b}")
        if self.proximity_threshold <= 0:
            raise ConfigurationError(
                f"proximity_threshold must be positive, got {self.proximity_threshold}"
            )
        for name in ("filename_boost", "max_coverage_bonus", "max_proximity_bonus", "filename_match_bonus"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")


@dataclass
class DocumentScore:
    """Score of one document and how it was reached."""

    score: float = 0.0
    base_score: float = 0.0
    coverage_bonus: float = 0.0
    proximity_bonus: float = 0.0
    filename_bonus: float = 0.0
    matched_terms: list[str] = field(default_factory=list)


def calculate_idf(doc_freq: int, total_docs: int) -> float:
    """ln((N - n + 0.5) / (n + 0.5) + 1); never negative for 0 <= n <= N."""
    if total_docs <= 0:
        return 0.0
    n = max(0, min(doc_freq, total_docs))
    return math.log((total_docs - n + 0.5) / (n + 0.5) + 1.0)


def bm25_term_score(
    idf: float, tf: int, doc_length: int, avg_doc_length: float, k1: float, b: float
) -> float:
    length_ratio = doc_length / avg_doc_length if avg_doc_length > 0 else 1.0
    denominator = tf + k1 * (1 - b + b * length_ratio)
    if denominator <= 0:
        return 0.0
    return idf * (tf * (k1 + 1)) / denominator


def calculate_coverage_bonus(matched: int, total: int, max_bonus: float) -> float:
    if total <= 0 or matched <= 0:
        return 0.0
    return max_bonus * (min(matched, total) / total) ** 1.5


def min_distance(a: Sequence[int], b: Sequence[int]) -> int:
    """Smallest |x - y| over x in a, y in b (both sorted)."""
    i = j = 0
    best = math.inf
    while i < len(a) and j < len(b):
        diff = a[i] - b[j]
        best = min(best, abs(diff))
        if best == 0:
            break
        if diff < 0:
            i += 1
        else:
            j += 1
    return int(best) if best != math.inf else 0


def calculate_proximity_score(
    term_positions: Mapping[str, Sequence[int]],
    query_terms: Iterable[str],
    threshold: int = 10,
) -> float:
    """How tightly the matched query terms cluster, from 0 to 1.

    Terms are nodes; an edge joins two terms whose closest occurrences are at
    most `threshold` positions apart. If the graph is not connected the score
    is 0, otherwise 1 - average edge distance / threshold. A lone term counts
    as distance 1.
    """
    terms = [t for t in dict.fromkeys(query_terms) if term_positions.get(t)]
    if not terms:
        return 0.0
    if len(terms) == 1:
        return max(0.0, 1 - 1 / threshold)

    positions = {t: sorted(term_positions[t]) for t in terms}
    adjacency: dict[str, list[str]] = defaultdict(list)
    distances: list[int] = []
    for i, left in enumerate(terms):
        for right in terms[i + 1 :]:
            distance = min_distance(positions[left], positions[right])
            if distance <= threshold:
                adjacency[left].append(right)
                adjacency[right].append(left)
                distances.append(distance)

    seen = {terms[0]}
    queue = deque([terms[0]])
    while queue:
        for neighbour in adjacency[queue.popleft()]:
            if neighbour not in seen:
                seen.add(neighbour)
                queue.append(neighbour)
    if len(seen) != len(terms):
        return 0.0

    average = sum(distances) / len(distances)
    return max(0.0, 1 - average / threshold)


class Scoring:
    """Scores candidate documents against query terms using the store's postings."""

    def __init__(self, store: DocumentStore, config: ScoringConfig | None = None):
        self.store = store
        self.config = config or ScoringConfig()

    async def calculate_document_scores(
        self,
        documents: Iterable[Document],
        query_terms: Iterable[str],
        total_doc_count: int | None = None,
    ) -> dict[int, DocumentScore]:
        docs = {doc.id: doc for doc in documents}
        terms = list(dict.fromkeys(query_terms))
        scores = {doc_id: DocumentScore() for doc_id in docs}
        if not docs or not terms:
            return scores

        total = total_doc_count if total_doc_count is not None else await self.store.count_documents()
        avg_length = await self.store.get_average_token_count()
        postings = await self.store.get_terms_by_value(terms)

        containing: dict[str, set[int]] = defaultdict(set)
        for posting in postings:
            containing[posting.term].add(posting.document_id)
        idf = {term: calculate_idf(len(ids), total) for term, ids in containing.items()}

        matched: dict[int, dict[str, None]] = defaultdict(dict)
        positions: dict[int, dict[str, list[int]]] = defaultdict(lambda: defaultdict(list))
        filename_hit: set[int] = set()
        cfg = self.config

        for posting in postings:
            doc = docs.get(posting.document_id)
            if doc is None:
                continue
            term_score = bm25_term_score(
                idf[posting.term], posting.frequency, doc.token_count, avg_length, cfg.k1, cfg.b
            )
            if posting.source is TermSource.FILENAME:
                term_score *= cfg.filename_boost
                filename_hit.add(doc.id)
            else:
                positions[doc.id][posting.term].extend(posting.positions)
            scores[doc.id].base_score += term_score
            matched[doc.id][posting.term] = None

        for doc_id, score in scores.items():
            doc_terms = list(matched.get(doc_id, {}))
            if not doc_terms:
                continue
            score.matched_terms = doc_terms
            score.coverage_bonus = calculate_coverage_bonus(
                len(doc_terms), len(terms), cfg.max_coverage_bonus
            )
            score.proximity_bonus = cfg.max_proximity_bonus * calculate_proximity_score(
                positions.get(doc_id, {}), terms, cfg.proximity_threshold
            )
            if doc_id in filename_hit:
                score.filename_bonus = cfg.filename_match_bonus
            score.score = score.base_score * (
                1 + score.coverage_bonus + score.proximity_bonus + score.filename_bonus
            )

        return scores
