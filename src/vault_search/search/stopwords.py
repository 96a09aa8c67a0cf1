"""Stopword list and removal for the tokenizer."""

import math

STOPWORDS: frozenset[str] = frozenset(
    {
        # English function words
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for",
        "if", "in", "into", "is", "it", "no", "not", "of", "on", "or",
        "such", "that", "the", "their", "then", "there", "these", "they",
        "this", "to", "was", "will", "with",
        # Markdown formatting
        "*", "**", "***", "---", "```",
        "#", "##", "###", "####", "#####", "######",
        # Stray symbols
        "-", "_", "`", "~", "|", "{", "}", "[", "]", "(", ")",
        '"', "'", "\\", "/", "@",
    }
)  # fmt: skip


def remove_stopwords(words: list[str], threshold: float | None = None) -> list[str]:
    """Remove stopwords from a list of words.

    Without a threshold every stopword is dropped. With a threshold (0.0 to
    1.0), stopwords are only dropped until their share of the words is at or
    below it. Later stopwords go first, and at least one word always remains.
    """
    if not threshold:
        return [word for word in words if word not in STOPWORDS]

    total = len(words)
    if total == 0:
        return words

    stopword_indices = [i for i, word in enumerate(words) if word in STOPWORDS]
    count = len(stopword_indices)
    if count / total <= threshold:
        return [word for word in words if word not in STOPWORDS]

    # (count - removed) / (total - removed) <= threshold
    min_removed = math.ceil((count - threshold * total) / (1 - threshold))
    to_remove = max(0, min(min_removed, count, total - 1))
    dropped = set(stopword_indices[count - to_remove :]) if to_remove else set()

    return [word for i, word in enumerate(words) if i not in dropped]
