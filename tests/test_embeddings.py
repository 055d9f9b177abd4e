import json

import httpx
import openai
import pytest

from toolrack.registry import RegistryOptions, ToolRegistry
from toolrack.search.embeddings import (
    CachedEmbedder,
    EmbeddingIndex,
    OpenAIEmbedder,
    build_embedding_inputs,
    cosine_similarity,
    to_embedding_info,
)
from toolrack.tool import create_tool

WEATHER = [1.0, 0.0, 0.0]
FILES = [0.0, 1.0, 0.0]
OTHER = [0.0, 0.0, 1.0]


def _vector(text: str) -> list[float]:
    lowered = text.lower()
    if "weather" in lowered or "meteorology" in lowered:
        return WEATHER
    if "file" in lowered:
        return FILES
    return OTHER


class KeywordEmbedder:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def __call__(self, texts):
        self.calls.append(list(texts))
        return [_vector(text) for text in texts]


class AsyncKeywordEmbedder(KeywordEmbedder):
    async def __call__(self, texts):
        return super().__call__(texts)


def _tools():
    return [
        create_tool("forecast", description="Get the weather forecast", handler=lambda p, c: None),
        create_tool("read-file", description="Read a file", handler=lambda p, c: None),
    ]


def test_to_embedding_info_rejects_bad_vectors() -> None:
    assert to_embedding_info([]) is None
    assert to_embedding_info([0, 0]) is None
    assert to_embedding_info([1, float("nan")]) is None
    assert to_embedding_info("abc") is None
    info = to_embedding_info([3, 4])
    assert info.magnitude == 5
    assert cosine_similarity(info, to_embedding_info([6, 8])) == pytest.approx(1.0)
    assert cosine_similarity(info, to_embedding_info([1, 2, 3])) == 0.0


def test_build_embedding_inputs_lists_populated_fields() -> None:
    tool = create_tool(
        "echo", description="Echo text", schema={"text": str}, tags=["util"], metadata={"x": 1}, handler=lambda p, c: p
    )
    assert build_embedding_inputs(tool) == [
        ("name", "echo"),
        ("description", "Echo text"),
        ("tags", "util"),
        ("schema_keys", "text"),
        ("metadata_keys", "x"),
    ]


def test_cached_embedder_memoizes_by_text_list() -> None:
    embedder = KeywordEmbedder()
    cached = CachedEmbedder(embedder)
    cached(["a", "b"])
    cached(["a", "b"])
    cached(["b", "a"])
    assert len(embedder.calls) == 2


def test_sync_embedder_ranks_by_similarity() -> None:
    embedder = KeywordEmbedder()
    registry = ToolRegistry(RegistryOptions(embed=embedder))
    registry.register(_tools())

    matches = registry.search({"rank": {"text": "meteorology"}, "explain": True})

    assert matches[0].tool.name == "forecast"
    assert matches[0].score == pytest.approx(1.0)
    assert matches[0].reasons == ("embedding:description:1.00",)
    assert matches[0].matches.embedding.field == "description"
    assert matches[1].score == 0


def test_embedding_text_filter_uses_threshold() -> None:
    registry = ToolRegistry(RegistryOptions(embed=KeywordEmbedder()))
    registry.register(_tools())

    assert registry.query({"text": "meteorology"}, select="name") == ["forecast"]


def test_embeddings_are_cached_by_content() -> None:
    embedder = KeywordEmbedder()
    registry = ToolRegistry(RegistryOptions(embed=embedder))
    registry.register(_tools())
    tool_calls = len(embedder.calls)

    registry.search({"rank": {"text": "meteorology"}})
    registry.search({"rank": {"text": "meteorology"}})
    assert tool_calls == 2
    assert len(embedder.calls) == tool_calls + 1

    registry.reindex()
    assert len(embedder.calls) == tool_calls + 1
    assert registry.search_index.embeddings.tool_entries(registry.get_tool("forecast"))


def test_failing_embedder_falls_back_to_text(fake_logger) -> None:
    def broken(texts):
        raise RuntimeError("embedding service down")

    logger = fake_logger()
    registry = ToolRegistry(RegistryOptions(embed=broken, logger=logger))
    registry.register(_tools())

    matches = registry.search({"rank": {"text": "weather"}})

    assert matches[0].tool.name == "forecast"
    assert logger.warning_calls


@pytest.mark.asyncio
async def test_async_embedder_resolves_through_asearch() -> None:
    embedder = AsyncKeywordEmbedder()
    registry = ToolRegistry(RegistryOptions(embed=embedder))
    registry.register(_tools())

    matches = await registry.asearch({"rank": {"text": "meteorology"}})

    assert matches[0].tool.name == "forecast"
    assert matches[0].score == pytest.approx(1.0)


def test_async_embedder_without_loop_is_skipped() -> None:
    index = EmbeddingIndex(AsyncKeywordEmbedder())
    assert index.query("weather") is None


@pytest.mark.asyncio
async def test_warm_embeddings_waits_for_pending() -> None:
    embedder = AsyncKeywordEmbedder()
    registry = ToolRegistry(RegistryOptions(embed=embedder))
    registry.register(_tools())

    await registry.warm_embeddings()

    tool = registry.get_tool("forecast")
    assert registry.search_index.embeddings.tool_entries(tool)[1].field == "description"


@pytest.mark.asyncio
async def test_openai_embedder_orders_by_index() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "object": "list",
                "data": [
                    {"object": "embedding", "index": 1, "embedding": [0.0, 1.0]},
                    {"object": "embedding", "index": 0, "embedding": [1.0, 0.0]},
                ],
                "model": "text-embedding-3-small",
                "usage": {"prompt_tokens": 2, "total_tokens": 2},
            },
        )

    client = openai.AsyncOpenAI(
        api_key="test-key",
        base_url="https://embeddings.test/v1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    embedder = OpenAIEmbedder(client=client)

    vectors = await embedder(["first", "second"])
    await embedder.aclose()

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen["path"] == "/v1/embeddings"
    assert seen["body"]["input"] == ["first", "second"]
    assert seen["body"]["model"] == "text-embedding-3-small"
    assert await OpenAIEmbedder(client=client)([]) == []
