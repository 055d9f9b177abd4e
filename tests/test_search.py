import pytest

from toolrack.search import (
    RankResult,
    SearchOptions,
    TextMode,
    TextQuery,
    ToolSummary,
    query_tools,
    search_tools,
    tokenize,
)
from toolrack.search.text import levenshtein, normalize_text_query, similarity
from toolrack.tool import create_tool


@pytest.fixture
def toolset():
    def noop(params, context):
        return None

    return [
        create_tool(
            "read-file",
            description="Read a file from disk",
            schema={"path": str},
            tags=["fs", "readonly"],
            handler=noop,
        ),
        create_tool(
            "write-file",
            description="Write a file to disk",
            schema={"path": str, "content": str},
            tags=["fs"],
            metadata={"mutates": True},
            handler=noop,
        ),
        create_tool(
            "http-get",
            description="Fetch a URL over HTTP",
            schema={"url": str},
            tags=["network"],
            namespace="web",
            version="2",
            metadata={"effort": 3, "capabilities": ["fetch", "http"], "owner": "team-net"},
            handler=noop,
        ),
    ]


def test_tokenize_splits_case_digits_and_marks() -> None:
    assert tokenize("readFileHTTPServer2go") == ["read", "file", "http", "server", "2", "go"]
    assert tokenize("Café_au-lait") == ["cafe", "au", "lait"]
    assert tokenize("") == []


def test_similarity_helpers() -> None:
    assert levenshtein("kitten", "sitting") == 3
    assert similarity("fetch", "fetsh") == pytest.approx(0.8)
    assert similarity("", "") == 1.0


def test_normalize_text_query_defaults() -> None:
    assert normalize_text_query("  ") is None
    assert normalize_text_query("!!!") is None
    normalized = normalize_text_query(TextQuery("Read Files", threshold=5, fields=["name", "bogus"]))
    assert normalized.tokens == ("read", "files")
    assert normalized.threshold == 1.0
    assert normalized.fields == ("name",)
    assert normalized.mode is TextMode.CONTAINS


@pytest.mark.parametrize(
    ("criteria", "expected"),
    [
        ({"tags": {"any": ["fs"]}}, ["read-file", "write-file"]),
        ({"tags": {"all": ["fs", "mutating"]}}, ["write-file"]),
        ({"tags": {"none": ["FS"]}}, ["http-get"]),
        ({"schema": {"keys": ["url"]}}, ["http-get"]),
        ({"metadata": {"eq": {"effort": 3}}}, ["http-get"]),
        ({"metadata": {"contains": {"capabilities": "http"}}}, ["http-get"]),
        ({"metadata": {"starts_with": {"owner": "team"}}}, ["http-get"]),
        ({"metadata": {"range": {"effort": {"min": 1, "max": 5}}}}, ["http-get"]),
        ({"metadata": {"has": ["mutates"]}}, ["write-file"]),
        ({"namespace": "web"}, ["http-get"]),
        ({"version": ["2", "3"]}, ["http-get"]),
        ({"text": "file"}, ["read-file", "write-file"]),
        ({"or": [{"tags": {"any": ["network"]}}, {"tags": {"all": ["mutating"]}}]}, ["write-file", "http-get"]),
        ({"not": {"tags": {"any": ["fs"]}}}, ["http-get"]),
        ({"and": [{"tags": {"any": ["fs"]}}, {"text": "write"}]}, ["write-file"]),
    ],
)
def test_query_filters(toolset, criteria, expected) -> None:
    assert query_tools(toolset, criteria, select="name") == expected


def test_query_without_criteria_returns_everything(toolset) -> None:
    assert query_tools(toolset, select="name") == ["read-file", "write-file", "http-get"]


def test_raising_predicate_means_no_match(toolset) -> None:
    assert query_tools(toolset, {"predicate": lambda tool: 1 / 0}) == []


def test_query_pagination_and_selection(toolset) -> None:
    assert query_tools(toolset, limit=1, offset=1, select="name") == ["write-file"]
    assert query_tools(toolset, limit=0, offset=-4, select="name") == ["read-file", "write-file", "http-get"]
    summaries = query_tools(toolset, {"namespace": "web"}, select="summary", include_schema=True)
    assert isinstance(summaries[0], ToolSummary)
    assert summaries[0].schema_keys == ("url",)
    assert summaries[0].schema is toolset[2].schema
    assert query_tools(toolset, {"namespace": "web"}, select="configuration")[0] is toolset[2].definition


def test_query_rejects_bad_sources() -> None:
    with pytest.raises(TypeError):
        query_tools(["not a tool"])


def test_tag_ranking_breaks_ties_by_name(toolset) -> None:
    matches = search_tools(toolset, {"rank": {"tags": ["fs"]}})

    assert [match.tool.name for match in matches] == ["read-file", "write-file", "http-get"]
    assert matches[0].score == 1
    assert matches[0].reasons == ("tag:fs",)
    assert matches[2].score == 0


def test_tie_breaker_none_keeps_input_order(toolset) -> None:
    reordered = list(reversed(toolset))
    matches = search_tools(reordered, SearchOptions(rank={"tags": ["fs"]}, tie_breaker="none"))
    assert [match.tool.name for match in matches] == ["write-file", "read-file", "http-get"]


def test_text_ranking_scores_fields(toolset) -> None:
    matches = search_tools(toolset, {"rank": {"text": "write disk"}, "explain": True})

    assert [match.tool.name for match in matches][:2] == ["write-file", "read-file"]
    assert matches[0].score == 3
    assert matches[0].reasons == ("text:name", "text:description")
    assert matches[0].matches.fields == ["name", "description"]


def test_tag_weights_scale_tag_scores(toolset) -> None:
    matches = search_tools(
        toolset, {"rank": {"tags": ["fs"], "tag_weights": {"readonly": 3}, "weights": {"tags": 2}}}
    )
    assert matches[0].tool.name == "read-file"
    assert matches[0].score == 2 + 6


def test_fuzzy_text_filter_tolerates_typos(toolset) -> None:
    matches = search_tools(toolset, {"filter": {"text": {"query": "fetsh", "mode": "fuzzy"}}})
    assert [match.tool.name for match in matches] == ["http-get"]


def test_exact_mode_requires_whole_tokens(toolset) -> None:
    names = query_tools(toolset, {"text": {"query": "fil", "mode": "exact"}}, select="name")
    assert names == []


def test_custom_ranker_can_exclude_and_override(toolset) -> None:
    def ranker(tool, context):
        if tool.name == "write-file":
            return RankResult(exclude=True)
        if tool.name == "http-get":
            return RankResult(score=10, override=True, reasons=("pinned",))
        return 0.5

    matches = search_tools(toolset, {"rank": {"tags": ["fs"]}, "ranker": ranker})

    assert [(match.tool.name, match.score) for match in matches] == [("http-get", 10), ("read-file", 1.5)]
    assert matches[0].reasons == ("pinned",)


def test_search_pagination_and_select(toolset) -> None:
    page = search_tools(toolset, {"rank": {"tags": ["fs"]}, "limit": 1, "offset": 1, "select": "name"})
    assert [match.tool for match in page] == ["write-file"]
