"""Embedding caches and the OpenAI embedder.

Tool embeddings are computed once per tool id and kept until the registry
reindexes. Query embeddings go through a content-keyed cache. When the embedder
is async, a synchronous lookup schedules the work and returns nothing until it
has resolved; ``wait_pending`` lets async callers wait for it.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import openai

if TYPE_CHECKING:
    from toolrack.tool import Tool

EmbeddingVector = Sequence[float]
Embedder = Callable[[list[str]], Sequence[EmbeddingVector] | Awaitable[Sequence[EmbeddingVector]]]

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


@dataclass(frozen=True, slots=True)
class EmbeddingInfo:
    vector: tuple[float, ...]
    magnitude: float


@dataclass(frozen=True, slots=True)
class EmbeddingEntry:
    field: str
    text: str
    vector: tuple[float, ...]
    magnitude: float


def to_embedding_info(vector: Any) -> EmbeddingInfo | None:
    """Accept only non-empty, all-finite vectors with a non-zero magnitude."""

    if not isinstance(vector, Sequence) or isinstance(vector, str) or not vector:
        return None
    values: list[float] = []
    for item in vector:
        if isinstance(item, bool) or not isinstance(item, (int, float)) or not math.isfinite(item):
            return None
        values.append(float(item))
    magnitude = math.sqrt(sum(value * value for value in values))
    if magnitude == 0:
        return None
    return EmbeddingInfo(vector=tuple(values), magnitude=magnitude)


def cosine_similarity(a: EmbeddingInfo | EmbeddingEntry, b: EmbeddingInfo | EmbeddingEntry) -> float:
    if len(a.vector) != len(b.vector) or not a.magnitude or not b.magnitude:
        return 0.0
    dot = sum(x * y for x, y in zip(a.vector, b.vector))
    return dot / (a.magnitude * b.magnitude)


def build_embedding_inputs(tool: Tool) -> list[tuple[str, str]]:
    inputs: list[tuple[str, str]] = []
    if tool.name.strip():
        inputs.append(("name", tool.name.strip()))
    if tool.description.strip():
        inputs.append(("description", tool.description.strip()))
    tags_text = " ".join(tag for tag in tool.tags if tag).strip()
    if tags_text:
        inputs.append(("tags", tags_text))
    keys = tool.definition.schema_keys
    if keys:
        inputs.append(("schema_keys", " ".join(keys)))
    metadata_keys = list((tool.metadata or {}).keys())
    if metadata_keys:
        inputs.append(("metadata_keys", " ".join(metadata_keys)))
    return inputs


class EmbeddingUnavailableError(RuntimeError):
    """An async embedder was called with no running event loop."""


class CachedEmbedder:
    """Memoize an embedder by the exact list of texts; failures are evicted."""

    def __init__(self, embedder: Embedder) -> None:
        self._embedder = embedder
        self._cache: dict[str, Any] = {}

    def _key(self, texts: list[str]) -> str:
        return json.dumps(texts)

    def cached(self, texts: list[str]) -> Any:
        return self._cache.get(self._key(texts))

    def __call__(self, texts: list[str]) -> Sequence[EmbeddingVector] | asyncio.Future[Sequence[EmbeddingVector]]:
        key = self._key(texts)
        if key in self._cache:
            return self._cache[key]
        value = self._embedder(list(texts))
        if not inspect.isawaitable(value):
            self._cache[key] = value
            return value
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(value):
                value.close()
            raise EmbeddingUnavailableError("async embedder requires a running event loop") from None
        future = asyncio.ensure_future(value, loop=loop)

        def _settle(task: asyncio.Future[Any]) -> None:
            if task.cancelled() or task.exception() is not None:
                if self._cache.get(key) is task:
                    del self._cache[key]
                return
            self._cache[key] = task.result()

        future.add_done_callback(_settle)
        self._cache[key] = future
        return future


class EmbeddingIndex:
    """Per-tool and per-query embedding lookups backed by a CachedEmbedder."""

    def __init__(self, embedder: Embedder, *, logger: logging.Logger | None = None) -> None:
        self.embedder = embedder if isinstance(embedder, CachedEmbedder) else CachedEmbedder(embedder)
        self._tools: dict[str, list[EmbeddingEntry]] = {}
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._logger = logger or logging.getLogger("toolrack.search")

    def warm(self, tool: Tool) -> None:
        """Start computing a tool's embeddings unless already cached or pending."""

        if tool.id in self._tools or tool.id in self._pending:
            return
        inputs = build_embedding_inputs(tool)
        if not inputs:
            self._tools[tool.id] = []
            return
        try:
            value = self.embedder([text for _, text in inputs])
        except Exception as exc:
            self._logger.warning("embedding failed for %s: %s", tool.id, exc)
            return
        if not isinstance(value, asyncio.Future):
            self._tools[tool.id] = _entries(inputs, value)
            return

        def _done(task: asyncio.Future[Any]) -> None:
            if self._pending.get(tool.id) is not task:
                return
            del self._pending[tool.id]
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                self._logger.warning("embedding failed for %s: %s", tool.id, error)
                return
            self._tools[tool.id] = _entries(inputs, task.result())

        self._pending[tool.id] = value
        value.add_done_callback(_done)

    def tool_entries(self, tool: Tool) -> list[EmbeddingEntry] | None:
        return self._tools.get(tool.id)

    def query(self, text: str) -> EmbeddingInfo | None:
        key = text.strip()
        if not key:
            return None
        try:
            value = self.embedder([key])
        except Exception as exc:
            self._logger.warning("query embedding failed: %s", exc)
            return None
        if isinstance(value, asyncio.Future):
            if not value.done() or value.cancelled() or value.exception() is not None:
                return None
            value = value.result()
        return _first_info(value)

    async def aquery(self, text: str) -> EmbeddingInfo | None:
        key = text.strip()
        if not key:
            return None
        try:
            value = self.embedder([key])
            if isinstance(value, asyncio.Future):
                value = await value
        except Exception as exc:
            self._logger.warning("query embedding failed: %s", exc)
            return None
        return _first_info(value)

    async def wait_pending(self) -> None:
        pending = list(self._pending.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def forget(self, tool_id: str) -> None:
        self._tools.pop(tool_id, None)
        task = self._pending.pop(tool_id, None)
        if task is not None and not task.done():
            task.cancel()

    def clear(self) -> None:
        for tool_id in list(self._pending) + list(self._tools):
            self.forget(tool_id)


def _entries(inputs: list[tuple[str, str]], vectors: Any) -> list[EmbeddingEntry]:
    if not isinstance(vectors, Sequence) or len(vectors) != len(inputs):
        return []
    entries = []
    for (field_name, text), vector in zip(inputs, vectors):
        info = to_embedding_info(vector)
        if info is None:
            return []
        entries.append(EmbeddingEntry(field=field_name, text=text, vector=info.vector, magnitude=info.magnitude))
    return entries


def _first_info(vectors: Any) -> EmbeddingInfo | None:
    if not isinstance(vectors, Sequence) or not vectors:
        return None
    return to_embedding_info(vectors[0])


class OpenAIEmbedder:
    """Embed texts with the OpenAI embeddings endpoint."""

    def __init__(
        self,
        *,
        model: str = DEFAULT_EMBEDDING_MODEL,
        client: openai.AsyncOpenAI | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self._client = client or openai.AsyncOpenAI(api_key=api_key, base_url=base_url, http_client=http_client)

    async def __call__(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = await self._client.embeddings.create(model=self.model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    async def aclose(self) -> None:
        await self._client.close()


__all__ = [
    "CachedEmbedder",
    "DEFAULT_EMBEDDING_MODEL",
    "Embedder",
    "EmbeddingEntry",
    "EmbeddingIndex",
    "EmbeddingInfo",
    "EmbeddingUnavailableError",
    "OpenAIEmbedder",
    "build_embedding_inputs",
    "cosine_similarity",
    "to_embedding_info",
]
