"""Deterministic digests of call inputs and outputs."""

from __future__ import annotations

import hashlib
import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True, slots=True)
class DigestOptions:
    input: bool = True
    output: bool = True
    algorithm: str = "sha256"

    def __post_init__(self) -> None:
        if self.algorithm not in hashlib.algorithms_available:
            raise ValueError(f"unsupported digest algorithm: {self.algorithm}")


DISABLED_DIGESTS = DigestOptions(input=False, output=False)


def resolve_digest_options(value: bool | DigestOptions | Mapping[str, Any] | None) -> DigestOptions:
    if value is None or value is False:
        return DISABLED_DIGESTS
    if value is True:
        return DigestOptions()
    if isinstance(value, DigestOptions):
        return value
    if isinstance(value, Mapping):
        return DigestOptions(
            input=bool(value.get("input", True)),
            output=bool(value.get("output", True)),
            algorithm=str(value.get("algorithm", "sha256")),
        )
    raise TypeError("digests must be a bool, DigestOptions, or mapping")


def stable_stringify(value: Any) -> str:
    """Serialize ``value`` with sorted mapping keys so equal data hashes equally."""

    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return json.dumps(value) if math.isfinite(value) else "null"
    if isinstance(value, BaseModel):
        return stable_stringify(value.model_dump(mode="json"))
    if isinstance(value, BaseException):
        return _encode({"name": type(value).__name__, "message": str(value)})
    return _encode(value)


def _encode(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda item: str(item[0]))
        return "{" + ",".join(f"{json.dumps(str(key))}:{_encode(item)}" for key, item in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    if isinstance(value, float) and not math.isfinite(value):
        return "null"
    return json.dumps(value, default=str)


def compute_digest(value: Any, algorithm: str = "sha256") -> str:
    return hashlib.new(algorithm, stable_stringify(value).encode("utf-8")).hexdigest()


__all__ = [
    "DISABLED_DIGESTS",
    "DigestOptions",
    "compute_digest",
    "resolve_digest_options",
    "stable_stringify",
]
