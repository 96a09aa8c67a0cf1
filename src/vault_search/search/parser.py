"""Note parsing: YAML frontmatter, inline tags and derived properties."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

import yaml

from vault_search.search.models import Property
from vault_search.search.properties import normalize_properties, normalize_property

logger = logging.getLogger(__name__)

# "#tag" preceded by start/whitespace/punctuation; must contain a non-digit
INLINE_TAG_PATTERN = re.compile(r"(?:^|(?<=[\s(\[,;]))#([\w][\w/-]*)", re.MULTILINE)
CODE_FENCE_PATTERN = re.compile(r"```.*?```", re.DOTALL)

FILE_CATEGORIES = {
    "md": "note",
    "markdown": "note",
    "txt": "note",
    "canvas": "canvas",
    "pdf": "document",
    "png": "image",
    "jpg": "image",
    "jpeg": "image",
    "gif": "image",
    "svg": "image",
    "webp": "image",
    "mp3": "audio",
    "wav": "audio",
    "m4a": "audio",
    "mp4": "video",
    "webm": "video",
}


@dataclass
class ParsedNote:
    """Result of parsing a note."""

    body: str
    frontmatter: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    properties: list[Property] = field(default_factory=list)


def split_frontmatter(content: str, file_path: str = "") -> tuple[dict[str, Any], str]:
    """Split YAML frontmatter from the body.

    Invalid YAML, a value PyYAML cannot construct (such as the date
    2024-13-45) or a non-mapping block leaves the content untouched.
    """
    if not content.startswith("---"):
        return {}, content

    parts = content.split("---", 2)
    if len(parts) < 3:
        return {}, content

    try:
        raw = yaml.safe_load(parts[1])
    except (yaml.YAMLError, ValueError) as e:
        logger.debug("Invalid YAML frontmatter in %s: %s", file_path, e)
        return {}, content

    if not isinstance(raw, dict):
        return {}, content
    return raw, parts[2].lstrip("\n")


def extract_inline_tags(body: str) -> list[str]:
    """Find #tags in the body, ignoring fenced code and numeric-only tags."""
    text = CODE_FENCE_PATTERN.sub(" ", body)
    tags = []
    for match in INLINE_TAG_PATTERN.finditer(text):
        tag = match.group(1).rstrip("/-")
        if tag and not tag.isdigit():
            tags.append(tag)
    return tags


def _frontmatter_tags(frontmatter: dict[str, Any]) -> list[str]:
    tags: list[str] = []
    for key in ("tags", "tag"):
        value = frontmatter.get(key)
        if isinstance(value, str):
            tags.extend(part for part in re.split(r"[,\s]+", value) if part)
        elif isinstance(value, list):
            tags.extend(str(item) for item in value if item is not None)
    return tags


def file_properties(path: str) -> list[Property]:
    """Properties every file gets from its name alone."""
    extension = PurePosixPath(path).suffix.lower().lstrip(".")
    if not extension:
        return []
    return [
        *normalize_property("file_type", extension),
        *normalize_property("file_category", FILE_CATEGORIES.get(extension, "other")),
    ]


def parse_note(content: str, file_path: str) -> ParsedNote:
    """Parse a note into body, tags and normalized properties."""
    frontmatter, body = split_frontmatter(content, file_path)

    tags: list[str] = []
    seen: set[str] = set()
    for tag in _frontmatter_tags(frontmatter) + extract_inline_tags(body):
        normalized = tag.strip().lstrip("#").lower()
        if normalized and normalized not in seen:
            seen.add(normalized)
            tags.append(normalized)

    scalar_fields = {k: v for k, v in frontmatter.items() if str(k).lower() not in ("tags", "tag")}
    properties = normalize_properties(scalar_fields)
    properties.extend(normalize_property("tags", tags))
    properties.extend(file_properties(file_path))

    return ParsedNote(body=body, frontmatter=frontmatter, tags=tags, properties=properties)
