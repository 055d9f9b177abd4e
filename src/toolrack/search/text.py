"""Tokenization and text relevance scoring over tool fields."""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from toolrack.tool import Tool


class TextMode(str, Enum):
    CONTAINS = "contains"
    EXACT = "exact"
    FUZZY = "fuzzy"


TEXT_FIELDS = ("name", "description", "tags", "schema_keys", "metadata_keys")
DEFAULT_THRESHOLD = 0.7

_CAMEL = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM = re.compile(r"([A-Z]+)([A-Z][a-z])")
_ALPHA_DIGIT = re.compile(r"([a-zA-Z])([0-9])")
_DIGIT_ALPHA = re.compile(r"([0-9])([a-zA-Z])")
_SEPARATORS = re.compile(r"[^a-z0-9]+")


def strip_marks(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def normalize_text(value: str) -> str:
    return strip_marks(value).lower()


def tokenize(value: str) -> list[str]:
    """Split at camelCase, letter/digit boundaries, and non-alphanumerics."""

    if not value:
        return []
    text = strip_marks(value)
    text = _CAMEL.sub(r"\1 \2", text)
    text = _ACRONYM.sub(r"\1 \2", text)
    text = _ALPHA_DIGIT.sub(r"\1 \2", text)
    text = _DIGIT_ALPHA.sub(r"\1 \2", text)
    return [token for token in _SEPARATORS.split(text.lower()) if token]


def levenshtein(a: str, b: str) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    longest = max(len(a), len(b))
    if not longest:
        return 1.0
    return 1 - levenshtein(a, b) / longest


def max_similarity_possible(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if not longest:
        return 1.0
    return 1 - abs(len(a) - len(b)) / longest


@dataclass(frozen=True, slots=True)
class TextQuery:
    query: str
    mode: TextMode | str = TextMode.CONTAINS
    fields: Sequence[str] | None = None
    threshold: float | None = None
    weights: Mapping[str, float] | None = None


@dataclass(frozen=True, slots=True)
class NormalizedTextQuery:
    raw: str
    query: str
    mode: TextMode
    fields: tuple[str, ...]
    threshold: float
    tokens: tuple[str, ...]
    weights: Mapping[str, float]


def normalize_text_query(value: str | TextQuery | Mapping[str, Any] | None) -> NormalizedTextQuery | None:
    """Resolve defaults; returns None for a query with no searchable tokens."""

    if value is None:
        return None
    if isinstance(value, Mapping):
        value = TextQuery(**value)
    if isinstance(value, str):
        value = TextQuery(query=value)
    raw = value.query.strip()
    query = normalize_text(raw).strip()
    tokens = tokenize(raw)
    if not query or not tokens:
        return None
    fields = tuple(item for item in (value.fields or ()) if item in TEXT_FIELDS) or TEXT_FIELDS
    return NormalizedTextQuery(
        raw=raw,
        query=query,
        mode=TextMode(value.mode),
        fields=fields,
        threshold=_clamp_threshold(value.threshold),
        tokens=tuple(tokens),
        weights=_normalize_weights(value.weights),
    )


def _clamp_threshold(value: float | None) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        return DEFAULT_THRESHOLD
    return min(1.0, max(0.0, float(value)))


def _normalize_weights(weights: Mapping[str, float] | None) -> dict[str, float]:
    normalized = {name: 1.0 for name in TEXT_FIELDS}
    for key, value in (weights or {}).items():
        if key not in normalized or isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isfinite(value):
            normalized[key] = max(0.0, float(value))
    return normalized


@dataclass(frozen=True, slots=True)
class TextToken:
    raw: str
    normalized: str


@dataclass(frozen=True, slots=True)
class TextSearchIndex:
    """Pre-normalized searchable fields of one tool."""

    name: str
    description: str
    name_tokens: tuple[str, ...]
    description_tokens: tuple[str, ...]
    tags: tuple[TextToken, ...]
    schema_keys: tuple[TextToken, ...]
    metadata_keys: tuple[TextToken, ...]


def _tokens(values: Iterable[str]) -> tuple[TextToken, ...]:
    return tuple(TextToken(raw=value, normalized=normalize_text(value)) for value in values)


def build_text_index(tool: Tool) -> TextSearchIndex:
    return TextSearchIndex(
        name=normalize_text(tool.name),
        description=normalize_text(tool.description),
        name_tokens=tuple(tokenize(tool.name)),
        description_tokens=tuple(tokenize(tool.description)),
        tags=_tokens(tool.tags),
        schema_keys=_tokens(tool.definition.schema_keys),
        metadata_keys=_tokens((tool.metadata or {}).keys()),
    )


@dataclass(slots=True)
class TextScore:
    score: float = 0.0
    fields: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    schema_keys: list[str] = field(default_factory=list)
    metadata_keys: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)


def _score_string(value: str, tokens: Sequence[str], query: NormalizedTextQuery) -> float:
    if not value:
        return 0.0
    if query.mode is TextMode.CONTAINS:
        return float(sum(1 for token in query.tokens if token in value))
    if query.mode is TextMode.EXACT:
        return float(sum(1 for token in query.tokens if value == token or token in tokens))
    score = 0.0
    for token in query.tokens:
        best = 0.0
        for candidate in tokens:
            if max_similarity_possible(candidate, token) < query.threshold:
                continue
            best = max(best, similarity(candidate, token))
            if best == 1.0:
                break
        if best >= query.threshold:
            score += best
    return score


def _score_token(token: str, query_token: str, query: NormalizedTextQuery) -> float:
    if not token:
        return 0.0
    if query.mode is TextMode.CONTAINS:
        return 1.0 if query_token in token else 0.0
    if query.mode is TextMode.EXACT:
        return 1.0 if token == query_token else 0.0
    if token == query_token:
        return 1.0
    if max_similarity_possible(token, query_token) < query.threshold:
        return 0.0
    score = similarity(token, query_token)
    return score if score >= query.threshold else 0.0


def _score_token_field(tokens: Sequence[TextToken], query: NormalizedTextQuery) -> tuple[float, list[str]]:
    matches: dict[str, None] = {}
    score = 0.0
    for query_token in query.tokens:
        best = 0.0
        best_raw: str | None = None
        for token in tokens:
            value = _score_token(token.normalized, query_token, query)
            if value > best:
                best, best_raw = value, token.raw
        if best > 0:
            score += best
            if best_raw is not None:
                matches.setdefault(best_raw, None)
    return score, list(matches)


_TOKEN_FIELD_LABELS = {"tags": "tags", "schema_keys": "schema-keys", "metadata_keys": "metadata-keys"}


def score_text(index: TextSearchIndex, query: NormalizedTextQuery) -> TextScore:
    """Score every requested field, recording matched fields and reasons."""

    result = TextScore()
    for name in query.fields:
        weight = query.weights.get(name, 1.0)
        if weight <= 0:
            continue
        if name in ("name", "description"):
            value = index.name if name == "name" else index.description
            tokens = index.name_tokens if name == "name" else index.description_tokens
            score = _score_string(value, tokens, query)
            if score > 0:
                result.score += score * weight
                result.fields.append(name)
                result.reasons.append(name)
            continue
        score, matches = _score_token_field(getattr(index, name), query)
        if matches:
            result.score += score * weight
            result.fields.append(name)
            getattr(result, name).extend(matches)
            result.reasons.append(f"{_TOKEN_FIELD_LABELS[name]}({', '.join(matches)})")
    return result


__all__ = [
    "DEFAULT_THRESHOLD",
    "NormalizedTextQuery",
    "TEXT_FIELDS",
    "TextMode",
    "TextQuery",
    "TextScore",
    "TextSearchIndex",
    "TextToken",
    "build_text_index",
    "levenshtein",
    "normalize_text",
    "normalize_text_query",
    "score_text",
    "similarity",
    "tokenize",
]
