from toolrack.builtins.search_tools import SearchToolsArguments, create_search_tool  # noqa: F401
