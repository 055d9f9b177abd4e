"""Tool discovery: filtering, text scoring, embeddings, and ranking."""

from toolrack.search.embeddings import (  # noqa: F401
    CachedEmbedder,
    Embedder,
    EmbeddingIndex,
    EmbeddingInfo,
    OpenAIEmbedder,
    cosine_similarity,
)
from toolrack.search.index import SearchIndex  # noqa: F401
from toolrack.search.predicates import (  # noqa: F401
    MetadataFilter,
    MetadataRange,
    SchemaFilter,
    TagFilter,
    ToolQuery,
    compile_criteria,
)
from toolrack.search.query import SearchOptions, Select, ToolSummary, query_tools, search_tools  # noqa: F401
from toolrack.search.ranking import (  # noqa: F401
    MatchDetails,
    RankContext,
    RankOptions,
    RankResult,
    RankWeights,
    ToolMatch,
)
from toolrack.search.text import TextMode, TextQuery, tokenize  # noqa: F401
