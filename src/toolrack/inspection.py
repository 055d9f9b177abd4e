"""Read-only inspection models for registered tools."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from toolrack.schema import field_type_name

if TYPE_CHECKING:
    from toolrack.tool import Tool, ToolDefinition


class DetailLevel(str, Enum):
    SUMMARY = "summary"
    STANDARD = "standard"
    FULL = "full"


class SchemaSummary(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    keys: list[str]
    shape: dict[str, str] | None = None


class MetadataFlags(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    capabilities: list[str] | None = None
    effort: str | int | float | None = None
    has_custom_metadata: bool = False


class ToolInspection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str
    description: str
    tags: list[str] = Field(default_factory=list)
    schema_summary: SchemaSummary | None = None
    metadata: MetadataFlags | None = None


class InspectionCounts(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    total: int
    with_tags: int
    with_metadata: int


class RegistryInspection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    detail_level: DetailLevel
    counts: InspectionCounts
    tools: list[ToolInspection]


def extract_schema_summary(definition: ToolDefinition, include_shape: bool = False) -> SchemaSummary:
    keys = list(definition.schema_keys)
    if not include_shape:
        return SchemaSummary(keys=keys)
    fields = definition.schema.model_fields
    return SchemaSummary(keys=keys, shape={key: field_type_name(fields[key]) for key in keys})


def extract_metadata_flags(metadata: Mapping[str, Any] | None) -> MetadataFlags:
    """Pick the known flags out of tool metadata."""

    if not metadata:
        return MetadataFlags()
    capabilities = metadata.get("capabilities")
    effort = metadata.get("effort")
    return MetadataFlags(
        capabilities=[item for item in capabilities if isinstance(item, str)]
        if isinstance(capabilities, (list, tuple))
        else None,
        effort=effort if isinstance(effort, (str, int, float)) and not isinstance(effort, bool) else None,
        has_custom_metadata=True,
    )


def _definition(tool: Tool | ToolDefinition) -> ToolDefinition:
    return getattr(tool, "definition", tool)


def inspect_tool(tool: Tool | ToolDefinition, detail_level: DetailLevel | str = DetailLevel.STANDARD) -> ToolInspection:
    level = DetailLevel(detail_level)
    definition = _definition(tool)
    data: dict[str, Any] = {
        "id": definition.id,
        "name": definition.name,
        "description": definition.description,
        "tags": list(definition.tags),
    }
    if level is not DetailLevel.SUMMARY:
        data["schema_summary"] = extract_schema_summary(definition, include_shape=level is DetailLevel.FULL)
        data["metadata"] = extract_metadata_flags(definition.metadata)
    return ToolInspection(**data)


def inspect_registry(
    tools: Iterable[Tool | ToolDefinition], detail_level: DetailLevel | str = DetailLevel.STANDARD
) -> RegistryInspection:
    level = DetailLevel(detail_level)
    definitions = [_definition(tool) for tool in tools]
    return RegistryInspection(
        detail_level=level,
        counts=InspectionCounts(
            total=len(definitions),
            with_tags=sum(1 for item in definitions if item.tags),
            with_metadata=sum(1 for item in definitions if item.metadata),
        ),
        tools=[inspect_tool(item, level) for item in definitions],
    )


__all__ = [
    "DetailLevel",
    "InspectionCounts",
    "MetadataFlags",
    "RegistryInspection",
    "SchemaSummary",
    "ToolInspection",
    "extract_metadata_flags",
    "extract_schema_summary",
    "inspect_registry",
    "inspect_tool",
]
