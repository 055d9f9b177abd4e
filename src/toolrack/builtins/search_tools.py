"""A tool that lets a model discover other tools in a registry."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from toolrack.search.query import SearchOptions
from toolrack.search.ranking import RankOptions
from toolrack.search.text import TextMode, TextQuery
from toolrack.tool import Tool, define_tool
from toolrack.types import ToolContext

if TYPE_CHECKING:
    from toolrack.registry import ToolRegistry

DEFAULT_DESCRIPTION = (
    "Search for available tools by query. Returns tools that match the search query, using "
    "semantic search when embeddings are configured or text-based search otherwise."
)


class SearchToolsArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(description="The search query to find relevant tools")
    limit: int | None = Field(default=None, gt=0, description="Maximum number of tools to return")
    tags: list[str] | None = Field(
        default=None, description="Filter by tags (tools must have at least one of these tags)"
    )


def create_search_tool(
    registry: ToolRegistry,
    *,
    limit: int = 10,
    explain: bool = False,
    name: str = "search-tools",
    description: str = DEFAULT_DESCRIPTION,
    tags: Iterable[str] = (),
    register: bool = True,
) -> Tool:
    """Build the ``search-tools`` tool over ``registry``.

    With ``register`` the tool is added to the registry and the registry's
    handle is returned.
    """

    async def handler(params: SearchToolsArguments, context: ToolContext) -> list[dict[str, Any]]:
        options = SearchOptions(
            filter={"tags": {"any": params.tags}} if params.tags else None,
            rank=RankOptions(tags=tuple(params.tags or ()), text=TextQuery(query=params.query, mode=TextMode.FUZZY)),
            limit=params.limit or limit,
            explain=explain,
        )
        matches = await registry.asearch(options)
        results = []
        for match in matches:
            entry: dict[str, Any] = {"name": match.tool.name, "description": match.tool.description}
            if match.tool.tags:
                entry["tags"] = list(match.tool.tags)
            entry["score"] = match.score
            if explain and match.reasons:
                entry["reasons"] = list(match.reasons)
            results.append(entry)
        return results

    definition = define_tool(
        name,
        description=description,
        schema=SearchToolsArguments,
        tags=["utility", "search", "readonly", *tags],
        metadata={"readOnly": True},
    )
    if register:
        return registry.register_definition(definition, handler)
    return Tool(definition, handler)


__all__ = ["SearchToolsArguments", "create_search_tool"]
