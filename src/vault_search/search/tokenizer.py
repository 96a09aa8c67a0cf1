"""Tokenizer that turns note text into position-tagged terms.

A tokenizer is a pipeline: normalizers rewrite the raw text, the result is
split on whitespace, stopwords are optionally removed, and analyzers add
derived terms (word parts, stems). Positions are indices into the token
stream after stopword removal.
"""

import re
import unicodedata
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from vault_search.search.errors import ConfigurationError
from vault_search.search.stopwords import remove_stopwords


@dataclass
class Token:
    """A term with its frequency and positions in the token stream."""

    term: str
    count: int = 0
    positions: list[int] = field(default_factory=list)


# Placeholders left in notes by editor selections; never indexed
PROTECTED_BLOCK_PATTERN = re.compile(r"\{\{stw-(?:selected|squeezed)\b[^\n]*?\}\}")
HTML_COMMENT_PATTERN = re.compile(r"<!--.*?-->", re.DOTALL)
CAMEL_LOWER_UPPER_PATTERN = re.compile(r"([a-z\d])([A-Z])")
CAMEL_ACRONYM_PATTERN = re.compile(r"([A-Z]+)([A-Z][a-z])")
SPECIAL_CHARS_PATTERN = re.compile(r"[^\w'’\s#-]")
SYMBOL_RUN_PATTERN = re.compile(r"[#_-]{2,}")
TAG_PREFIX_PATTERN = re.compile(r"#([^#\s]+)")
DELIMITER_PATTERN = re.compile(r"[-_]")
APOSTROPHES = "'’"
WHITESPACE_PATTERN = re.compile(r"\s+")


def remove_protected_blocks(text: str) -> str:
    return PROTECTED_BLOCK_PATTERN.sub(" ", text)


def remove_html_comments(text: str) -> str:
    return HTML_COMMENT_PATTERN.sub(" ", text)


def split_camel_case(text: str) -> str:
    """Split camelCase and acronym boundaries (must run before lowercase)."""
    text = CAMEL_LOWER_UPPER_PATTERN.sub(r"\1 \2", text)
    return CAMEL_ACRONYM_PATTERN.sub(r"\1 \2", text)


def lowercase(text: str) -> str:
    return text.lower()


def remove_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not 0x300 <= ord(ch) <= 0x36F)
    return unicodedata.normalize("NFC", stripped)


def remove_special_chars(text: str) -> str:
    """Keep letters, digits, apostrophes, '#', '_' and '-'; drop symbol runs."""
    text = SPECIAL_CHARS_PATTERN.sub(" ", text)
    return SYMBOL_RUN_PATTERN.sub(" ", text)


def remove_tag_prefix(text: str) -> str:
    return TAG_PREFIX_PATTERN.sub(r"\1", text)


NORMALIZERS: dict[str, Callable[[str], str]] = {
    "remove_protected_blocks": remove_protected_blocks,
    "remove_html_comments": remove_html_comments,
    "split_camel_case": split_camel_case,
    "lowercase": lowercase,
    "remove_diacritics": remove_diacritics,
    "remove_special_chars": remove_special_chars,
    "remove_tag_prefix": remove_tag_prefix,
}


def _merge(tokens: dict[str, Token], term: str, positions: Iterable[int]) -> None:
    existing = tokens.get(term)
    if existing is None:
        tokens[term] = Token(term=term, positions=list(positions))
    else:
        existing.positions.extend(positions)


def _finalize(tokens: dict[str, Token]) -> list[Token]:
    for token in tokens.values():
        token.positions = sorted(set(token.positions))
        token.count = len(token.positions)
    return list(tokens.values())


def word_delimiter(tokens: list[Token]) -> list[Token]:
    """Add the parts of hyphenated/underscored words as tokens of their own.

    The original token is kept. Boundary apostrophes are stripped before
    splitting, so 'quoted' also yields quoted.
    """
    merged: dict[str, Token] = {}
    for token in tokens:
        _merge(merged, token.term, token.positions)

    for token in tokens:
        stripped = token.term.strip(APOSTROPHES)
        if stripped == token.term and not DELIMITER_PATTERN.search(stripped):
            continue
        for part in DELIMITER_PATTERN.split(stripped):
            if part and part != token.term:
                _merge(merged, part, token.positions)

    return _finalize(merged)


# Longest suffixes first; (suffix, replacement)
_STEM_RULES: tuple[tuple[str, str], ...] = (
    ("ization", "ize"),
    ("ational", "ate"),
    ("fulness", "ful"),
    ("ousness", "ous"),
    ("iveness", "ive"),
    ("tional", "tion"),
    ("ingly", ""),
    ("ement", ""),
    ("ness", ""),
    ("ies", "y"),
    ("ing", ""),
    ("edly", ""),
    ("ed", ""),
    ("ly", ""),
    ("es", ""),
    ("s", ""),
)


def stem(word: str) -> str:
    """Light suffix-stripping stemmer."""
    if len(word) <= 3 or not word.isalpha() or word.endswith("ss"):
        return word
    for suffix, replacement in _STEM_RULES:
        if word.endswith(suffix) and len(word) - len(suffix) >= 3:
            return word[: -len(suffix)] + replacement
    return word


def stemmer(tokens: list[Token]) -> list[Token]:
    """Add the stem of every token, keeping the original form too."""
    merged: dict[str, Token] = {}
    for token in tokens:
        _merge(merged, token.term, token.positions)
        stemmed = stem(token.term)
        if stemmed != token.term:
            _merge(merged, stemmed, token.positions)
    return _finalize(merged)


ANALYZERS: dict[str, Callable[[list[Token]], list[Token]]] = {
    "word_delimiter": word_delimiter,
    "stemmer": stemmer,
}


class Tokenizer:
    """Configurable normalizer/analyzer pipeline."""

    def __init__(
        self,
        normalizers: Sequence[str] = (),
        analyzers: Sequence[str] = (),
        remove_stopwords: bool = True,
        stopword_threshold: float | None = None,
    ):
        unknown = [name for name in normalizers if name not in NORMALIZERS]
        if unknown:
            raise ConfigurationError(f"Unknown normalizer(s): {', '.join(unknown)}")
        unknown = [name for name in analyzers if name not in ANALYZERS]
        if unknown:
            raise ConfigurationError(f"Unknown analyzer(s): {', '.join(unknown)}")
        if stopword_threshold is not None and not 0.0 <= stopword_threshold <= 1.0:
            raise ConfigurationError(
                f"stopword_threshold must be between 0 and 1, got {stopword_threshold}"
            )

        self.normalizers = tuple(normalizers)
        self.analyzers = tuple(analyzers)
        self.remove_stopwords = remove_stopwords
        self.stopword_threshold = stopword_threshold

    def normalize(self, text: str) -> str:
        for name in self.normalizers:
            text = NORMALIZERS[name](text)
        return text

    def term_sequence(self, text: str) -> list[str]:
        """Return the primary term at each position, before analyzers run."""
        words = [word for word in WHITESPACE_PATTERN.split(self.normalize(text)) if word]
        if self.remove_stopwords:
            words = remove_stopwords(words, self.stopword_threshold)
        return words

    def tokenize(self, text: str) -> list[Token]:
        terms: dict[str, Token] = {}
        for position, word in enumerate(self.term_sequence(text)):
            _merge(terms, word, (position,))
        tokens = _finalize(terms)

        for name in self.analyzers:
            tokens = ANALYZERS[name](tokens)
        return tokens

    def unique_terms(self, text: str) -> list[str]:
        return [token.term for token in self.tokenize(text)]


def content_tokenizer() -> Tokenizer:
    """Tokenizer for note bodies."""
    return Tokenizer(
        normalizers=(
            "remove_protected_blocks",
            "remove_html_comments",
            "lowercase",
            "remove_diacritics",
            "remove_special_chars",
            "remove_tag_prefix",
        ),
        analyzers=("word_delimiter",),
    )


def name_tokenizer() -> Tokenizer:
    """Tokenizer for file names: camelCase aware, keeps every word."""
    return Tokenizer(
        normalizers=(
            "split_camel_case",
            "lowercase",
            "remove_diacritics",
            "remove_special_chars",
        ),
        analyzers=("word_delimiter",),
        remove_stopwords=False,
    )
