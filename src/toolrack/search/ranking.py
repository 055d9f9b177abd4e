"""Relevance scoring and ordering of tool matches."""

from __future__ import annotations

import functools
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from toolrack.search.embeddings import EmbeddingInfo
from toolrack.search.text import NormalizedTextQuery, TextQuery, TextSearchIndex, normalize_text_query, score_text

if TYPE_CHECKING:
    from toolrack.search.index import SearchIndex
    from toolrack.tool import Tool


@dataclass(frozen=True, slots=True)
class EmbeddingMatchDetail:
    field: str
    score: float


@dataclass(slots=True)
class MatchDetails:
    fields: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    schema_keys: list[str] = field(default_factory=list)
    metadata_keys: list[str] = field(default_factory=list)
    embedding: EmbeddingMatchDetail | None = None

    def merge(self, other: MatchDetails) -> None:
        for name in ("fields", "tags", "schema_keys", "metadata_keys"):
            _merge_unique(getattr(self, name), getattr(other, name))
        if other.embedding is not None:
            self.embedding = other.embedding


@dataclass(frozen=True, slots=True)
class ToolMatch:
    tool: Any
    score: float
    reasons: tuple[str, ...] = ()
    matches: MatchDetails | None = None


@dataclass(frozen=True, slots=True)
class RankWeights:
    tags: float = 1.0
    text: float = 1.0


@dataclass(frozen=True, slots=True)
class RankContext:
    text: NormalizedTextQuery | None
    preferred_tags: tuple[str, ...]
    tag_weights: Mapping[str, float]
    weights: RankWeights
    index: TextSearchIndex


@dataclass(frozen=True, slots=True)
class RankResult:
    score: float = 0.0
    reasons: Sequence[str] = ()
    matches: MatchDetails | None = None
    override: bool = False
    exclude: bool = False


Ranker = Callable[["Tool", RankContext], "float | RankResult | None"]
TieBreaker = Callable[[ToolMatch, ToolMatch], int]


@dataclass(frozen=True, slots=True)
class RankOptions:
    tags: Sequence[str] = ()
    tag_weights: Mapping[str, float] = field(default_factory=dict)
    text: str | TextQuery | Mapping[str, Any] | None = None
    weights: RankWeights | Mapping[str, float] | None = None


def _weight(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 1.0
    return float(value)


def _merge_unique(target: list[str], extra: Sequence[str]) -> None:
    for item in extra:
        if item not in target:
            target.append(item)


class Scorer:
    """Scores tools for one search request."""

    def __init__(
        self,
        rank: RankOptions | None,
        index: SearchIndex,
        *,
        ranker: Ranker | None = None,
        explain: bool = False,
    ) -> None:
        rank = rank or RankOptions()
        weights = rank.weights
        if isinstance(weights, Mapping):
            weights = RankWeights(tags=_weight(weights.get("tags")), text=_weight(weights.get("text")))
        elif weights is None:
            weights = RankWeights()
        self.weights = RankWeights(tags=_weight(weights.tags), text=_weight(weights.text))
        self.preferred_tags = tuple(tag.lower() for tag in rank.tags if tag)
        self.tag_weights = {
            key.lower(): float(value)
            for key, value in rank.tag_weights.items()
            if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)
        }
        self.tag_set = set(self.preferred_tags) | set(self.tag_weights)
        self.text = normalize_text_query(rank.text) if rank.text is not None else None
        self.index = index
        self.query_info: EmbeddingInfo | None = index.query_embedding(self.text.raw) if self.text else None
        self.ranker = ranker
        self.explain = explain

    def match(self, tool: Tool) -> ToolMatch | None:
        score = 0.0
        reasons: list[str] = []
        details = MatchDetails()

        if self.tag_set:
            matched = [tag for tag in tool.tags if tag.lower() in self.tag_set]
            if matched:
                score += sum(self.weights.tags * self.tag_weights.get(tag.lower(), 1.0) for tag in matched)
                reasons.extend(f"tag:{tag}" for tag in matched)
                _merge_unique(details.tags, matched)

        if self.text is not None and self.weights.text != 0:
            text_score = score_text(self.index.text_index(tool), self.text)
            if text_score.score > 0:
                score += text_score.score * self.weights.text
                reasons.extend(f"text:{reason}" for reason in text_score.reasons)
                _merge_unique(details.fields, text_score.fields)
                _merge_unique(details.tags, text_score.tags)
                _merge_unique(details.schema_keys, text_score.schema_keys)
                _merge_unique(details.metadata_keys, text_score.metadata_keys)
            embedding = self.index.embedding_match(tool, self.text, self.query_info)
            if embedding is not None:
                score += embedding.score * self.weights.text
                reasons.append(f"embedding:{embedding.field}:{embedding.similarity:.2f}")
                details.embedding = EmbeddingMatchDetail(field=embedding.field, score=embedding.similarity)

        if self.ranker is not None:
            context = RankContext(
                text=self.text,
                preferred_tags=self.preferred_tags,
                tag_weights=self.tag_weights,
                weights=self.weights,
                index=self.index.text_index(tool),
            )
            ranked = self.ranker(tool, context)
            if isinstance(ranked, RankResult):
                if ranked.exclude:
                    return None
                score = ranked.score if ranked.override else score + ranked.score
                reasons.extend(ranked.reasons)
                if ranked.matches is not None:
                    details.merge(ranked.matches)
            elif isinstance(ranked, (int, float)) and not isinstance(ranked, bool):
                score += ranked

        if score < 0:
            return None
        return ToolMatch(tool=tool, score=score, reasons=tuple(reasons), matches=details if self.explain else None)


def match_comparator(tie_breaker: str | TieBreaker = "name") -> Callable[[ToolMatch, ToolMatch], int]:
    """Descending score, then the tie breaker (``name``, ``none``, or a callable)."""

    def compare(a: ToolMatch, b: ToolMatch) -> int:
        if a.score != b.score:
            return -1 if a.score > b.score else 1
        if callable(tie_breaker):
            return tie_breaker(a, b)
        if tie_breaker == "name":
            return (a.tool.name > b.tool.name) - (a.tool.name < b.tool.name)
        return 0

    return compare


def rank_tools(
    tools: Sequence[Tool],
    index: SearchIndex,
    *,
    rank: RankOptions | None = None,
    ranker: Ranker | None = None,
    tie_breaker: str | TieBreaker = "name",
    explain: bool = False,
) -> list[ToolMatch]:
    scorer = Scorer(rank, index, ranker=ranker, explain=explain)
    matches = [match for match in (scorer.match(tool) for tool in tools) if match is not None]
    matches.sort(key=functools.cmp_to_key(match_comparator(tie_breaker)))
    return matches


__all__ = [
    "EmbeddingMatchDetail",
    "MatchDetails",
    "RankContext",
    "RankOptions",
    "RankResult",
    "RankWeights",
    "Ranker",
    "Scorer",
    "TieBreaker",
    "ToolMatch",
    "match_comparator",
    "rank_tools",
]
