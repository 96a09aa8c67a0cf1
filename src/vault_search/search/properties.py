"""Normalization and comparison rules for document properties.

Properties come from frontmatter and inline tags. Names are lowercased,
string values are lowercased, and tag values lose their leading '#'. Query
values are resolved to the same representations so equality and range
lookups line up with what was stored.
"""

import logging
import re
from datetime import date, datetime
from typing import Any

import dateparser

from vault_search.search.models import Property

logger = logging.getLogger(__name__)

TAG_PROPERTY_NAMES = frozenset({"tags", "tag"})

NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)$")
ISO_DATE_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[t ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:z|[+-]\d{2}:?\d{2})?)?$",
    re.IGNORECASE,
)
HAS_LETTER_PATTERN = re.compile(r"[^\W\d_]")

DATEPARSER_SETTINGS = {
    "PREFER_DATES_FROM": "past",
    "RETURN_AS_TIMEZONE_AWARE": False,
}


def normalize_name(name: str) -> str:
    return name.strip().lower()


def normalize_number(value: int | float) -> int | float:
    """Collapse integral floats so 5.0 and 5 share one representation."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_number(value: str) -> int | float | None:
    text = value.strip()
    if not NUMBER_PATTERN.match(text):
        return None
    return normalize_number(float(text)) if "." in text else int(text)


def parse_date(value: str) -> str | None:
    """Resolve a date expression to a comparable ISO string.

    ISO-8601 input is returned as-is (lowercased). Natural-language input
    such as "yesterday" or "3 days ago" is parsed and returned as YYYY-MM-DD.
    """
    text = value.strip().lower()
    if not text:
        return None
    if ISO_DATE_PATTERN.match(text):
        return text
    if not HAS_LETTER_PATTERN.search(text):
        return None
    parsed = dateparser.parse(text, languages=["en"], settings=DATEPARSER_SETTINGS)
    if parsed is None:
        return None
    return parsed.date().isoformat()


def _scalar(name: str, value: Any) -> str | int | float | None:
    if value is None or isinstance(value, dict):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return normalize_number(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat().lower()

    text = str(value).strip()
    if name in TAG_PROPERTY_NAMES:
        text = text.lstrip("#")
    if not text:
        return None
    return text.lower()


def normalize_property(name: str, value: Any) -> list[Property]:
    """Build normalized Property records for one name/value pair.

    Lists produce one record per scalar element. None, mappings and empty
    strings produce nothing.
    """
    key = normalize_name(name)
    if not key:
        return []

    values = value if isinstance(value, (list, tuple, set)) else [value]
    records: list[Property] = []
    for item in values:
        scalar = _scalar(key, item)
        if scalar is not None:
            records.append(Property(name=key, value=scalar))
    return records


def normalize_properties(raw: dict[str, Any]) -> list[Property]:
    records: list[Property] = []
    for name, value in raw.items():
        records.extend(normalize_property(str(name), value))
    return records


def equality_candidates(name: str, value: Any) -> list[str | int | float]:
    """All stored representations that a query value should match."""
    key = normalize_name(name)
    if isinstance(value, str):
        text = _scalar(key, value)
        if text is None:
            return []
        candidates: list[str | int | float] = [text]
        number = to_number(text)
        if number is not None:
            candidates.append(number)
        else:
            parsed = parse_date(text)
            if parsed is not None and parsed != text:
                candidates.append(parsed)
        return candidates

    scalar = _scalar(key, value)
    if scalar is None:
        return []
    if isinstance(scalar, (int, float)):
        return [scalar, str(scalar)]
    return [scalar]


def resolve_comparable(value: Any) -> int | float | str | None:
    """Resolve a value for ordered comparison.

    Returns a number, an ISO date string, or None when the value is neither
    numeric nor a date.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return normalize_number(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat().lower()
    if isinstance(value, str):
        number = to_number(value)
        if number is not None:
            return number
        return parse_date(value)
    return None


def coerce_stored(value: Any) -> int | float | str:
    """Numeric form of a stored value when it has one, else the value."""
    if isinstance(value, str):
        number = to_number(value)
        return number if number is not None else value
    return value


def stored_comparable(value: Any, comparable: int | float | str) -> int | float | str | None:
    """A stored value in the same domain as `comparable`, or None.

    Numeric comparables only see numbers and numeric strings; date
    comparables only see ISO-shaped date strings.
    """
    if isinstance(comparable, str):
        if isinstance(value, str) and ISO_DATE_PATTERN.match(value):
            return value
        return None
    coerced = coerce_stored(value)
    if isinstance(coerced, (int, float)):
        return coerced
    return None
