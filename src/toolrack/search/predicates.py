"""Composable tool predicates and query criteria."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from toolrack.schema import schemas_loosely_match
from toolrack.search.text import TextQuery, normalize_text_query, score_text

if TYPE_CHECKING:
    from toolrack.search.index import SearchIndex
    from toolrack.tool import Tool

ToolPredicate = Callable[["Tool"], bool]

_log = logging.getLogger("toolrack.search")


@dataclass(frozen=True, slots=True)
class TagFilter:
    any: Sequence[str] = ()
    all: Sequence[str] = ()
    none: Sequence[str] = ()


@dataclass(frozen=True, slots=True)
class SchemaFilter:
    keys: Sequence[str] = ()
    matches: type[BaseModel] | None = None


@dataclass(frozen=True, slots=True)
class MetadataRange:
    min: float | None = None
    max: float | None = None


@dataclass(frozen=True, slots=True)
class MetadataFilter:
    has: Sequence[str] = ()
    eq: Mapping[str, Any] = field(default_factory=dict)
    contains: Mapping[str, Any] = field(default_factory=dict)
    starts_with: Mapping[str, str] = field(default_factory=dict)
    range: Mapping[str, MetadataRange | Mapping[str, float]] = field(default_factory=dict)
    predicate: Callable[[Mapping[str, Any] | None], bool] | None = None


@dataclass(frozen=True, slots=True)
class ToolQuery:
    """Filter criteria; every populated field must match.

    ``all_of``/``any_of``/``none_of`` nest further criteria.
    """

    tags: TagFilter | None = None
    text: str | TextQuery | Mapping[str, Any] | None = None
    schema: SchemaFilter | None = None
    metadata: MetadataFilter | None = None
    namespace: str | Sequence[str] | None = None
    version: str | Sequence[str] | None = None
    predicate: ToolPredicate | None = None
    all_of: Sequence[ToolQuery] = ()
    any_of: Sequence[ToolQuery] = ()
    none_of: Sequence[ToolQuery] = ()


def coerce_query(value: ToolQuery | Mapping[str, Any] | None) -> ToolQuery | None:
    """Build a ToolQuery from a plain mapping (``and``/``or``/``not`` allowed)."""

    if value is None or isinstance(value, ToolQuery):
        return value
    if not isinstance(value, Mapping):
        raise TypeError("query criteria must be a ToolQuery or a mapping")
    data = dict(value)
    for alias, target in (("and", "all_of"), ("or", "any_of"), ("not", "none_of")):
        if alias in data:
            data[target] = data.pop(alias)
    for key in ("all_of", "any_of", "none_of"):
        nested = data.get(key)
        if nested is None:
            continue
        if isinstance(nested, (ToolQuery, Mapping)):
            nested = [nested]
        data[key] = tuple(coerce_query(item) for item in nested)
    if isinstance(data.get("tags"), Mapping):
        data["tags"] = TagFilter(**data["tags"])
    if isinstance(data.get("schema"), Mapping):
        data["schema"] = SchemaFilter(**data["schema"])
    if isinstance(data.get("metadata"), Mapping):
        data["metadata"] = MetadataFilter(**data["metadata"])
    return ToolQuery(**data)


def _lower(values: Sequence[str]) -> list[str]:
    return [str(value).lower() for value in values if value]


def tags_match_any(tags: Sequence[str]) -> ToolPredicate:
    wanted = set(_lower(tags))
    if not wanted:
        return lambda tool: True
    return lambda tool: any(tag.lower() in wanted for tag in tool.tags)


def tags_match_all(tags: Sequence[str]) -> ToolPredicate:
    wanted = _lower(tags)
    if not wanted:
        return lambda tool: True
    return lambda tool: set(wanted) <= {tag.lower() for tag in tool.tags}


def tags_match_none(tags: Sequence[str]) -> ToolPredicate:
    forbidden = set(_lower(tags))
    if not forbidden:
        return lambda tool: True
    return lambda tool: not any(tag.lower() in forbidden for tag in tool.tags)


def schema_has_keys(keys: Sequence[str]) -> ToolPredicate:
    wanted = _lower(keys)
    if not wanted:
        return lambda tool: True

    def predicate(tool: Tool) -> bool:
        present = {key.lower() for key in tool.definition.schema_keys}
        return bool(present) and all(key in present for key in wanted)

    return predicate


def schema_matches(schema: type[BaseModel]) -> ToolPredicate:
    return lambda tool: schemas_loosely_match(tool.schema, schema)


def metadata_has_keys(metadata: Mapping[str, Any] | None, keys: Sequence[str]) -> bool:
    return metadata is not None and all(key in metadata for key in keys)


def metadata_equals(metadata: Mapping[str, Any] | None, expected: Mapping[str, Any]) -> bool:
    if metadata is None:
        return False
    return all(key in metadata and metadata[key] == value for key, value in expected.items())


def metadata_contains(metadata: Mapping[str, Any] | None, needles: Mapping[str, Any]) -> bool:
    """Substring match for strings, membership for lists."""

    if metadata is None:
        return False
    for key, needle in needles.items():
        if needle is None:
            continue
        value = metadata.get(key)
        if isinstance(value, str) and isinstance(needle, str):
            if needle not in value:
                return False
        elif isinstance(value, (list, tuple)):
            items = needle if isinstance(needle, (list, tuple)) else [needle]
            if not all(item in value for item in items):
                return False
        elif isinstance(needle, (list, tuple)):
            if value not in needle:
                return False
        elif value != needle:
            return False
    return True


def metadata_starts_with(metadata: Mapping[str, Any] | None, prefixes: Mapping[str, str]) -> bool:
    if metadata is None:
        return False
    for key, prefix in prefixes.items():
        if prefix is None:
            continue
        value = metadata.get(key)
        if not isinstance(value, str) or not value.startswith(prefix):
            return False
    return True


def metadata_in_range(metadata: Mapping[str, Any] | None, ranges: Mapping[str, Any]) -> bool:
    if metadata is None:
        return False
    for key, bounds in ranges.items():
        if bounds is None:
            continue
        if isinstance(bounds, Mapping):
            bounds = MetadataRange(**bounds)
        value = metadata.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if bounds.min is not None and value < bounds.min:
            return False
        if bounds.max is not None and value > bounds.max:
            return False
    return True


def _values(value: str | Sequence[str]) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def text_matches(text: Any, index: SearchIndex) -> ToolPredicate:
    """Match when the text score is positive or an embedding clears the threshold."""

    normalized = normalize_text_query(text)
    if normalized is None:
        return lambda tool: True
    query_info = index.query_embedding(normalized.raw)

    def predicate(tool: Tool) -> bool:
        if score_text(index.text_index(tool), normalized).score > 0:
            return True
        match = index.embedding_match(tool, normalized, query_info)
        return match is not None and match.similarity >= normalized.threshold

    return predicate


def _build_predicates(criteria: ToolQuery, index: SearchIndex) -> list[ToolPredicate]:
    predicates: list[ToolPredicate] = []
    if criteria.namespace is not None:
        namespaces = _values(criteria.namespace)
        if namespaces:
            predicates.append(lambda tool: tool.identity.namespace in namespaces)
    if criteria.version is not None:
        versions = _values(criteria.version)
        if versions:
            predicates.append(lambda tool: (tool.identity.version or "") in versions)
    if criteria.tags is not None:
        if criteria.tags.any:
            predicates.append(tags_match_any(criteria.tags.any))
        if criteria.tags.all:
            predicates.append(tags_match_all(criteria.tags.all))
        if criteria.tags.none:
            predicates.append(tags_match_none(criteria.tags.none))
    if criteria.text is not None:
        predicates.append(text_matches(criteria.text, index))
    if criteria.schema is not None:
        if criteria.schema.keys:
            predicates.append(schema_has_keys(criteria.schema.keys))
        if criteria.schema.matches is not None:
            predicates.append(schema_matches(criteria.schema.matches))
    meta = criteria.metadata
    if meta is not None:
        if meta.has:
            predicates.append(lambda tool: metadata_has_keys(tool.metadata, meta.has))
        if meta.eq:
            predicates.append(lambda tool: metadata_equals(tool.metadata, meta.eq))
        if meta.contains:
            predicates.append(lambda tool: metadata_contains(tool.metadata, meta.contains))
        if meta.starts_with:
            predicates.append(lambda tool: metadata_starts_with(tool.metadata, meta.starts_with))
        if meta.range:
            predicates.append(lambda tool: metadata_in_range(tool.metadata, meta.range))
        if meta.predicate is not None:
            metadata_predicate = meta.predicate
            predicates.append(lambda tool: bool(metadata_predicate(tool.metadata)))
    if criteria.predicate is not None:
        predicates.append(criteria.predicate)
    return predicates


def compile_criteria(criteria: ToolQuery | Mapping[str, Any], index: SearchIndex) -> ToolPredicate:
    """Compile criteria into a single predicate; a raising predicate means no match."""

    query = coerce_query(criteria)
    if query is None:
        return lambda tool: True
    predicates = _build_predicates(query, index)
    all_of = [compile_criteria(item, index) for item in query.all_of]
    any_of = [compile_criteria(item, index) for item in query.any_of]
    none_of = [compile_criteria(item, index) for item in query.none_of]

    def predicate(tool: Tool) -> bool:
        for check in predicates:
            try:
                if not check(tool):
                    return False
            except Exception as exc:
                _log.debug("query predicate failed for %s: %s", tool.id, exc)
                return False
        if all_of and not all(check(tool) for check in all_of):
            return False
        if any_of and not any(check(tool) for check in any_of):
            return False
        if none_of and any(check(tool) for check in none_of):
            return False
        return True

    return predicate


def collect_text_queries(criteria: ToolQuery | None) -> list[str]:
    """Raw text of every text criterion, for pre-computing query embeddings."""

    if criteria is None:
        return []
    found: list[str] = []
    normalized = normalize_text_query(criteria.text) if criteria.text is not None else None
    if normalized is not None:
        found.append(normalized.raw)
    for nested in (*criteria.all_of, *criteria.any_of, *criteria.none_of):
        found.extend(collect_text_queries(coerce_query(nested)))
    return found


__all__ = [
    "MetadataFilter",
    "MetadataRange",
    "SchemaFilter",
    "TagFilter",
    "ToolPredicate",
    "ToolQuery",
    "coerce_query",
    "collect_text_queries",
    "compile_criteria",
    "metadata_contains",
    "metadata_equals",
    "metadata_has_keys",
    "metadata_in_range",
    "metadata_starts_with",
    "schema_has_keys",
    "schema_matches",
    "tags_match_all",
    "tags_match_any",
    "tags_match_none",
    "text_matches",
]
