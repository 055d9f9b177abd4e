"""Filtering, ranked search, pagination, and result selection."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from toolrack.search.index import SearchIndex
from toolrack.search.predicates import ToolQuery, collect_text_queries, coerce_query, compile_criteria
from toolrack.search.ranking import RankOptions, RankWeights, Ranker, TieBreaker, ToolMatch, rank_tools
from toolrack.search.text import normalize_text_query

if TYPE_CHECKING:
    from toolrack.tool import Tool, ToolDefinition, ToolIdentity


class Select(str, Enum):
    TOOL = "tool"
    NAME = "name"
    CONFIGURATION = "configuration"
    SUMMARY = "summary"


@dataclass(frozen=True, slots=True)
class ToolSummary:
    id: str
    identity: ToolIdentity
    name: str
    description: str
    schema_keys: tuple[str, ...]
    tags: tuple[str, ...] = ()
    metadata: Mapping[str, Any] | None = None
    deprecated: bool = False
    configuration: ToolDefinition | None = None
    schema: type[BaseModel] | None = None


@dataclass(frozen=True, slots=True)
class SearchOptions:
    filter: ToolQuery | Mapping[str, Any] | None = None
    rank: RankOptions | Mapping[str, Any] | None = None
    ranker: Ranker | None = None
    tie_breaker: str | TieBreaker = "name"
    limit: int | None = None
    offset: int | None = None
    select: Select | str = Select.TOOL
    include_tool_configuration: bool = False
    include_schema: bool = False
    explain: bool = False


def normalize_offset(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    return max(0, math.floor(value))


def normalize_limit(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    limit = math.floor(value)
    return limit if limit > 0 else None


def paginate(items: list[Any], limit: Any = None, offset: Any = None) -> list[Any]:
    start = normalize_offset(offset)
    size = normalize_limit(limit)
    return items[start:] if size is None else items[start : start + size]


def summarize(tool: Tool, *, include_configuration: bool = False, include_schema: bool = False) -> ToolSummary:
    definition = tool.definition
    return ToolSummary(
        id=tool.id,
        identity=tool.identity,
        name=tool.name,
        description=tool.description,
        schema_keys=tuple(definition.schema_keys),
        tags=tool.tags,
        metadata=tool.metadata,
        deprecated=definition.deprecated,
        configuration=definition if include_configuration else None,
        schema=tool.schema if include_schema else None,
    )


def select_tool(tool: Tool, select: Select | str, *, include_configuration: bool, include_schema: bool) -> Any:
    select = Select(select)
    if select is Select.NAME:
        return tool.name
    if select is Select.CONFIGURATION:
        return tool.definition
    if select is Select.SUMMARY:
        return summarize(tool, include_configuration=include_configuration, include_schema=include_schema)
    return tool


def coerce_search_options(options: SearchOptions | Mapping[str, Any] | None) -> SearchOptions:
    if options is None:
        return SearchOptions()
    if isinstance(options, SearchOptions):
        return options
    return SearchOptions(**options)


def _coerce_rank(rank: RankOptions | Mapping[str, Any] | None) -> RankOptions | None:
    if rank is None or isinstance(rank, RankOptions):
        return rank
    data = dict(rank)
    weights = data.get("weights")
    if isinstance(weights, Mapping):
        data["weights"] = RankWeights(**weights)
    return RankOptions(**data)


def filter_tools(tools: Iterable[Tool], index: SearchIndex, criteria: ToolQuery | Mapping[str, Any] | None) -> list[Tool]:
    query = coerce_query(criteria)
    if query is None:
        return list(tools)
    predicate = compile_criteria(query, index)
    return [tool for tool in tools if predicate(tool)]


def run_query(
    tools: Iterable[Tool],
    index: SearchIndex,
    criteria: ToolQuery | Mapping[str, Any] | None = None,
    *,
    limit: int | None = None,
    offset: int | None = None,
    select: Select | str = Select.TOOL,
    include_tool_configuration: bool = False,
    include_schema: bool = False,
) -> list[Any]:
    matched = paginate(filter_tools(tools, index, criteria), limit, offset)
    return [
        select_tool(tool, select, include_configuration=include_tool_configuration, include_schema=include_schema)
        for tool in matched
    ]


def run_search(tools: Iterable[Tool], index: SearchIndex, options: SearchOptions | Mapping[str, Any] | None = None) -> list[ToolMatch]:
    """Filter, rank, and paginate; ``tool`` on each match follows ``select``."""

    opts = coerce_search_options(options)
    candidates = filter_tools(tools, index, opts.filter)
    ranked = rank_tools(
        candidates,
        index,
        rank=_coerce_rank(opts.rank),
        ranker=opts.ranker,
        tie_breaker=opts.tie_breaker,
        explain=opts.explain,
    )
    page = paginate(ranked, opts.limit, opts.offset)
    if Select(opts.select) is Select.TOOL:
        return page
    return [
        ToolMatch(
            tool=select_tool(
                match.tool,
                opts.select,
                include_configuration=opts.include_tool_configuration,
                include_schema=opts.include_schema,
            ),
            score=match.score,
            reasons=match.reasons,
            matches=match.matches,
        )
        for match in page
    ]


def search_texts(options: SearchOptions) -> list[str]:
    """Every text whose embedding the search will look up."""

    texts = collect_text_queries(coerce_query(options.filter))
    rank = _coerce_rank(options.rank)
    if rank is not None and rank.text is not None:
        normalized = normalize_text_query(rank.text)
        if normalized is not None:
            texts.append(normalized.raw)
    return texts


def _resolve_source(source: Any) -> tuple[list[Tool], SearchIndex]:
    from toolrack.tool import Tool

    index = getattr(source, "search_index", None)
    if isinstance(index, SearchIndex) and callable(getattr(source, "tools", None)):
        return list(source.tools()), index
    if isinstance(source, Tool):
        return [source], SearchIndex()
    if isinstance(source, Iterable):
        tools = list(source)
        if not all(isinstance(tool, Tool) for tool in tools):
            raise TypeError("query source must contain Tool handles")
        return tools, SearchIndex()
    raise TypeError("query source must be a registry, a Tool, or an iterable of Tools")


def query_tools(source: Any, criteria: ToolQuery | Mapping[str, Any] | None = None, **options: Any) -> list[Any]:
    """Filter a registry, a single tool, or a list of tools."""

    tools, index = _resolve_source(source)
    return run_query(tools, index, criteria, **options)


def search_tools(source: Any, options: SearchOptions | Mapping[str, Any] | None = None) -> list[ToolMatch]:
    tools, index = _resolve_source(source)
    return run_search(tools, index, options)


__all__ = [
    "SearchOptions",
    "Select",
    "ToolSummary",
    "coerce_search_options",
    "filter_tools",
    "normalize_limit",
    "normalize_offset",
    "paginate",
    "query_tools",
    "run_query",
    "run_search",
    "search_texts",
    "search_tools",
    "select_tool",
    "summarize",
]
