"""Query operations, the fluent query builder and the executor."""

import logging
from dataclasses import dataclass, field
from typing import Any

from vault_search.search.conditions import (
    AndCondition,
    Condition,
    ConditionResult,
    FilenameCondition,
    FolderCondition,
    KeywordCondition,
    OrCondition,
    PropertyCondition,
    PropertyFilter,
    SearchContext,
    evaluate,
)
from vault_search.search.database import OPERATORS
from vault_search.search.errors import InvalidQueryError

logger = logging.getLogger(__name__)


def _string_list(data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise InvalidQueryError(f"'{key}' must be a list of strings")
    return [v for v in value if v.strip()]


def property_filter_from_dict(data: Any) -> PropertyFilter:
    if not isinstance(data, dict):
        raise InvalidQueryError(f"Property filter must be an object, got {type(data).__name__}")
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise InvalidQueryError("Property filter requires a non-empty 'name'")
    if "value" not in data:
        raise InvalidQueryError(f"Property filter '{name}' requires a 'value'")
    operator = data.get("operator") or "=="
    if operator not in OPERATORS:
        raise InvalidQueryError(
            f"Unknown operator {operator!r} for property '{name}'; "
            f"expected one of {', '.join(sorted(OPERATORS))}"
        )
    return PropertyFilter(name=name, value=data["value"], operator=operator)


@dataclass
class QueryOperation:
    """One AND-group of a compound query; operations are ORed together."""

    keywords: list[str] = field(default_factory=list)
    filenames: list[str] = field(default_factory=list)
    folders: list[str] = field(default_factory=list)
    properties: list[PropertyFilter] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "QueryOperation":
        if not isinstance(data, dict):
            raise InvalidQueryError(f"Query operation must be an object, got {type(data).__name__}")
        properties = data.get("properties") or []
        if not isinstance(properties, (list, tuple)):
            raise InvalidQueryError("'properties' must be a list of filters")
        return cls(
            keywords=_string_list(data, "keywords"),
            filenames=_string_list(data, "filenames"),
            folders=_string_list(data, "folders"),
            properties=[property_filter_from_dict(p) for p in properties],
        )

    def is_empty(self) -> bool:
        return not (self.keywords or self.filenames or self.folders or self.properties)

    def to_condition(self) -> AndCondition:
        """Build the AND group: property, folder, filename, then keywords."""
        builder = QueryBuilder()
        if self.properties:
            builder.and_(PropertyCondition(list(self.properties)))
        if self.folders:
            builder.and_(FolderCondition(list(self.folders)))
        if self.filenames:
            builder.and_(FilenameCondition(list(self.filenames)))
        if self.keywords:
            builder.and_(KeywordCondition(list(self.keywords)))
        return builder.build()


class QueryBuilder:
    """Fluent builder; conditions combine with AND unless `or_` is used."""

    def __init__(self) -> None:
        self._root: Condition | None = None

    def and_(self, condition: Condition) -> "QueryBuilder":
        if self._root is None:
            self._root = AndCondition([condition])
        elif isinstance(self._root, AndCondition):
            self._root = AndCondition([*self._root.children, condition])
        else:
            self._root = AndCondition([self._root, condition])
        return self

    def or_(self, condition: Condition) -> "QueryBuilder":
        if self._root is None:
            self._root = OrCondition([condition])
        elif isinstance(self._root, OrCondition):
            self._root = OrCondition([*self._root.children, condition])
        else:
            self._root = OrCondition([self._root, condition])
        return self

    def build(self) -> Condition:
        return self._root if self._root is not None else AndCondition()


def build_query(operations: list[QueryOperation]) -> Condition:
    """OR together the AND groups of all non-empty operations."""
    builder = QueryBuilder()
    for operation in operations:
        if operation.is_empty():
            logger.warning("Ignoring query operation with no keywords, filenames, folders or properties")
            continue
        builder.or_(operation.to_condition())
    return builder.build()


@dataclass
class QueryResult:
    results: list[ConditionResult]
    count: int


class QueryExecutor:
    """Evaluates a condition tree and ranks the matches by score."""

    def __init__(self, context: SearchContext):
        self.context = context

    async def execute(self, condition: Condition) -> QueryResult:
        matches = await evaluate(condition, self.context)
        # sorted() is stable: equal scores keep evaluation order
        ranked = sorted(matches.values(), key=lambda r: r.score, reverse=True)
        return QueryResult(results=ranked, count=len(ranked))
