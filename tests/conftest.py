import pathlib
import shutil
import sys
from typing import Any

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"

# Ensure src/ is importable when running tests without installing the package.
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture(autouse=True)
def _isolate_toolrack_home(monkeypatch: pytest.MonkeyPatch):
    """Point TOOLRACK_HOME at a repo-local sandbox so we never touch the real FS."""

    home = PROJECT_ROOT / ".work"
    if home.exists():
        shutil.rmtree(home, ignore_errors=True)
    home.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("TOOLRACK_HOME", str(home))
    monkeypatch.delenv("TOOLRACK_LOG_LEVEL", raising=False)
    yield


class FakeLogger:
    """Lightweight in-memory fake logger that records calls."""

    def __init__(self, name: str = "fake") -> None:
        self.name = name
        self.info_calls: list[tuple[tuple[Any, ...], dict[str, Any]]] = []
        self.debug_calls: list[tuple[tuple[Any, ...], dict[str, Any]]] = []
        self.warning_calls: list[tuple[tuple[Any, ...], dict[str, Any]]] = []
        self.error_calls: list[tuple[tuple[Any, ...], dict[str, Any]]] = []
        self.exception_calls: list[tuple[tuple[Any, ...], dict[str, Any]]] = []

    def info(self, *args: Any, **kwargs: Any) -> None:
        self.info_calls.append((args, kwargs))

    def debug(self, *args: Any, **kwargs: Any) -> None:
        self.debug_calls.append((args, kwargs))

    def warning(self, *args: Any, **kwargs: Any) -> None:
        self.warning_calls.append((args, kwargs))

    def error(self, *args: Any, **kwargs: Any) -> None:
        self.error_calls.append((args, kwargs))

    def exception(self, *args: Any, **kwargs: Any) -> None:
        self.exception_calls.append((args, kwargs))


@pytest.fixture
def fake_logger() -> type[FakeLogger]:
    """Provide FakeLogger class for use in patches."""
    return FakeLogger


class EventRecorder:
    """Collect events from a Tool or registry wildcard subscription."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    def __call__(self, event: Any) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of(self, type: str) -> list[Any]:
        return [event for event in self.events if event.type == type]


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def sum_tool():
    from toolrack.tool import create_tool

    async def handler(params, context):
        return params.a + params.b

    return create_tool(
        "sum",
        description="Add two integers",
        schema={"a": int, "b": int},
        tags=["math"],
        handler=handler,
    )


@pytest.fixture
def parse_number_tool():
    from toolrack.tool import create_tool

    return create_tool(
        "parse-number",
        description="Parse a numeric string",
        schema={"str": str},
        handler=lambda params, context: {"value": int(params.str)},
    )


@pytest.fixture
def double_tool():
    from toolrack.tool import create_tool

    async def handler(params, context):
        return {"value": params.value * 2}

    return create_tool("double", description="Double a value", schema={"value": int}, handler=handler)
