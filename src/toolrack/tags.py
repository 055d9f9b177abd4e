"""Tag validation and metadata-derived tags."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

KEBAB_CASE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

# metadata flag -> tag it implies
METADATA_FLAG_TAGS = {"mutates": "mutating", "readOnly": "readonly", "dangerous": "dangerous"}


def normalize_tags(
    tool_name: str, tags: Iterable[str] | None, metadata: Mapping[str, Any] | None = None
) -> tuple[str, ...]:
    """Lowercase, validate, and de-duplicate tags, keeping first-seen order."""

    if isinstance(tags, str):
        raise TypeError(f'Tool "{tool_name}": tags must be a sequence of strings')
    seen: dict[str, None] = {}
    for raw in tags or ():
        if not isinstance(raw, str):
            raise TypeError(f'Tool "{tool_name}": tags must be strings')
        tag = raw.strip().lower()
        if not tag:
            raise ValueError(f'Tool "{tool_name}": tag must not be empty')
        if not KEBAB_CASE.match(tag):
            raise ValueError(
                f'Tool "{tool_name}": tag "{raw}" must be kebab-case (lowercase letters, digits, hyphen)'
            )
        seen.setdefault(tag, None)
    for flag, tag in METADATA_FLAG_TAGS.items():
        if metadata and metadata.get(flag) is True:
            seen.setdefault(tag, None)
    return tuple(seen)


def tags_lower(tags: Iterable[str]) -> set[str]:
    return {tag.lower() for tag in tags}


__all__ = ["KEBAB_CASE", "METADATA_FLAG_TAGS", "normalize_tags", "tags_lower"]
