"""Side-table of search data kept per tool id."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from toolrack.search.embeddings import Embedder, EmbeddingIndex, EmbeddingInfo, cosine_similarity
from toolrack.search.text import NormalizedTextQuery, TextSearchIndex, build_text_index

if TYPE_CHECKING:
    from toolrack.tool import Tool


@dataclass(frozen=True, slots=True)
class EmbeddingMatch:
    field: str
    similarity: float
    score: float


class SearchIndex:
    """Text indexes and embeddings for a set of tools.

    Entries are keyed by tool id and rebuilt only through ``add`` or
    ``reindex``.
    """

    def __init__(self, embed: Embedder | None = None, *, logger: logging.Logger | None = None) -> None:
        self._text: dict[str, tuple[Tool, TextSearchIndex]] = {}
        self.embeddings = EmbeddingIndex(embed, logger=logger) if embed is not None else None

    def text_index(self, tool: Tool) -> TextSearchIndex:
        cached = self._text.get(tool.id)
        if cached is not None and cached[0] is tool:
            return cached[1]
        index = build_text_index(tool)
        self._text[tool.id] = (tool, index)
        return index

    def add(self, tool: Tool) -> None:
        self._text[tool.id] = (tool, build_text_index(tool))
        if self.embeddings is not None:
            self.embeddings.forget(tool.id)
            self.embeddings.warm(tool)

    def forget(self, tool_id: str) -> None:
        self._text.pop(tool_id, None)
        if self.embeddings is not None:
            self.embeddings.forget(tool_id)

    def reindex(self, tools: Iterable[Tool]) -> None:
        self._text.clear()
        if self.embeddings is not None:
            self.embeddings.clear()
        for tool in tools:
            self.add(tool)

    def query_embedding(self, text: str) -> EmbeddingInfo | None:
        if self.embeddings is None:
            return None
        return self.embeddings.query(text)

    async def aquery_embedding(self, text: str) -> EmbeddingInfo | None:
        if self.embeddings is None:
            return None
        return await self.embeddings.aquery(text)

    async def wait_pending(self) -> None:
        if self.embeddings is not None:
            await self.embeddings.wait_pending()

    def embedding_match(
        self, tool: Tool, query: NormalizedTextQuery, query_info: EmbeddingInfo | None
    ) -> EmbeddingMatch | None:
        """Best field similarity at or above the threshold, weighted per field."""

        if query_info is None or self.embeddings is None:
            return None
        best: EmbeddingMatch | None = None
        for entry in self.embeddings.tool_entries(tool) or ():
            weight = query.weights.get(entry.field, 0.0)
            if weight <= 0:
                continue
            similarity = cosine_similarity(query_info, entry)
            if similarity < query.threshold:
                continue
            score = similarity * weight
            if best is None or score > best.score:
                best = EmbeddingMatch(field=entry.field, similarity=similarity, score=score)
        return best


__all__ = ["EmbeddingMatch", "SearchIndex"]
