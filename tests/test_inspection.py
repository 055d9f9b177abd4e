import pytest
from pydantic import ValidationError

from toolrack.inspection import (
    DetailLevel,
    extract_metadata_flags,
    extract_schema_summary,
    inspect_registry,
    inspect_tool,
)
from toolrack.tool import define_tool


@pytest.fixture
def definition():
    return define_tool(
        "fetch",
        description="Fetch a URL",
        schema={"url": str, "retries": (int, 3)},
        tags=["network"],
        metadata={"capabilities": ["http", 7], "effort": "medium", "owner": "net"},
    )


def test_schema_summary_levels(definition) -> None:
    assert extract_schema_summary(definition).keys == ["url", "retries"]
    assert extract_schema_summary(definition).shape is None
    assert extract_schema_summary(definition, include_shape=True).shape == {"url": "string", "retries": "integer?"}


def test_metadata_flags(definition) -> None:
    flags = extract_metadata_flags(definition.metadata)
    assert flags.capabilities == ["http"]
    assert flags.effort == "medium"
    assert flags.has_custom_metadata is True
    assert extract_metadata_flags(None).has_custom_metadata is False
    assert extract_metadata_flags({"effort": True}).effort is None


def test_inspect_tool_detail_levels(definition) -> None:
    summary = inspect_tool(definition, "summary")
    standard = inspect_tool(definition)
    full = inspect_tool(definition, DetailLevel.FULL)

    assert summary.schema_summary is None
    assert summary.metadata is None
    assert summary.tags == ["network"]
    assert standard.schema_summary.shape is None
    assert full.schema_summary.shape["url"] == "string"
    assert full.id == "default:fetch"


def test_inspection_models_are_frozen(definition) -> None:
    inspection = inspect_tool(definition)
    with pytest.raises(ValidationError):
        inspection.name = "changed"


def test_inspect_registry_counts(definition) -> None:
    bare = define_tool("bare", description="")
    report = inspect_registry([definition, bare], "summary")

    assert report.detail_level is DetailLevel.SUMMARY
    assert report.counts.total == 2
    assert report.counts.with_tags == 1
    assert report.counts.with_metadata == 1
    assert [tool.name for tool in report.tools] == ["fetch", "bare"]


def test_unknown_detail_level_rejected(definition) -> None:
    with pytest.raises(ValueError):
        inspect_tool(definition, "verbose")
