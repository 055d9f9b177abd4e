"""Truncation helpers for log payloads."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel

LOG_PAYLOAD_MAX_BYTES = 2_000
LOG_PAYLOAD_MAX_LINES = 40


def truncate_output(
    text: str, *, max_bytes: int = LOG_PAYLOAD_MAX_BYTES, max_lines: int = LOG_PAYLOAD_MAX_LINES, marker: str = "[truncated]"
) -> tuple[str, bool]:
    """Cut text at whichever of the byte or line budget is hit first.

    Bytes are counted as UTF-8. Returns ``(text, was_truncated)``; a truncated
    result ends with ``marker`` on its own line.
    """

    truncated = False
    collected: list[str] = []
    bytes_used = 0

    for idx, line in enumerate(text.splitlines(keepends=True)):
        if idx >= max_lines:
            truncated = True
            break
        encoded = line.encode("utf-8")
        if bytes_used + len(encoded) > max_bytes:
            # keep the part of the line that still fits
            collected.append(encoded[: max_bytes - bytes_used].decode("utf-8", errors="ignore"))
            truncated = True
            break
        collected.append(line)
        bytes_used += len(encoded)

    result = "".join(collected)
    if truncated:
        if result and not result.endswith("\n"):
            result += "\n"
        result += marker
    return result, truncated


def stringify_for_log(value: Any) -> str:
    """Render arguments or results for a log line, bounded in size."""

    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    result, _ = truncate_output(text)
    return result


__all__ = ["LOG_PAYLOAD_MAX_BYTES", "LOG_PAYLOAD_MAX_LINES", "stringify_for_log", "truncate_output"]
