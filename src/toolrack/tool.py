"""Tool identity, definitions, and the executable Tool handle."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, unquote

from pydantic import BaseModel

from toolrack.concurrency import create_limiter, normalize_concurrency
from toolrack.digests import DigestOptions
from toolrack.errors import ApprovalRequiredError, ToolExecutionError
from toolrack.events import WILDCARD, EventHub, Listener, ToolEvent
from toolrack.policy import PolicyContextProvider, PolicyHooks
from toolrack.schema import normalize_schema, schema_keys, to_json_schema
from toolrack.tags import normalize_tags
from toolrack.types import (
    OutputValidationMode,
    ToolCall,
    ToolContext,
    ToolOutcome,
    ToolResult,
    coerce_tool_call,
    create_tool_call,
)

if TYPE_CHECKING:
    from toolrack.diagnostics import Diagnostics
    from toolrack.signals import AbortSignal

DEFAULT_NAMESPACE = "default"
_ID_SAFE = "-_.!~*'()"

Handler = Callable[[Any, ToolContext], Any]


@dataclass(frozen=True, slots=True)
class ToolIdentity:
    name: str
    namespace: str = DEFAULT_NAMESPACE
    version: str | None = None

    def __post_init__(self) -> None:
        name = self.name.strip() if isinstance(self.name, str) else ""
        if not name:
            raise ValueError("Tool identity requires a name")
        namespace = self.namespace.strip() if isinstance(self.namespace, str) else ""
        version = self.version.strip() if isinstance(self.version, str) else None
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "namespace", namespace or DEFAULT_NAMESPACE)
        object.__setattr__(self, "version", version or None)

    @property
    def id(self) -> str:
        return format_tool_id(self)


def format_tool_id(identity: ToolIdentity) -> str:
    """Render ``namespace:name[@version]`` with each part percent-encoded."""

    text = f"{quote(identity.namespace, safe=_ID_SAFE)}:{quote(identity.name, safe=_ID_SAFE)}"
    if identity.version:
        text += f"@{quote(identity.version, safe=_ID_SAFE)}"
    return text


def parse_tool_id(tool_id: str) -> ToolIdentity:
    if not isinstance(tool_id, str):
        raise TypeError("tool id must be a string")
    trimmed = tool_id.strip()
    if not trimmed:
        raise ValueError("tool id must not be empty")
    namespace, sep, rest = trimmed.partition(":")
    if not sep:
        return ToolIdentity(name=unquote(namespace))
    name, _, version = rest.partition("@")
    return ToolIdentity(name=unquote(name), namespace=unquote(namespace), version=unquote(version) or None)


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Immutable description of a tool; build it through ``define_tool``."""

    name: str
    description: str
    schema: type[BaseModel]
    output_schema: type[BaseModel] | None = None
    tags: tuple[str, ...] = ()
    metadata: Mapping[str, Any] | None = None
    namespace: str = DEFAULT_NAMESPACE
    version: str | None = None
    title: str | None = None
    examples: tuple[Any, ...] = ()
    deprecated: bool = False
    policy: PolicyHooks | None = None
    policy_context: PolicyContextProvider | Mapping[str, Any] | None = None
    digests: bool | DigestOptions | None = None
    output_validation_mode: OutputValidationMode | None = None
    concurrency: int | None = None
    timeout_ms: float | None = None
    telemetry: bool = False

    @property
    def identity(self) -> ToolIdentity:
        return ToolIdentity(name=self.name, namespace=self.namespace, version=self.version)

    @property
    def id(self) -> str:
        return format_tool_id(self.identity)

    @property
    def schema_keys(self) -> list[str]:
        return schema_keys(self.schema)

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "identity": {"namespace": self.namespace, "name": self.name, "version": self.version},
            "name": self.name,
            "description": self.description,
            "parameters": to_json_schema(self.schema),
            "tags": list(self.tags),
        }
        if self.output_schema is not None:
            data["output"] = to_json_schema(self.output_schema)
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        if self.title:
            data["title"] = self.title
        if self.deprecated:
            data["deprecated"] = True
        return data


def define_tool(
    name: str,
    *,
    description: str,
    schema: Any = None,
    output_schema: Any = None,
    tags: Iterable[str] | None = None,
    metadata: Mapping[str, Any] | None = None,
    namespace: str | None = None,
    version: str | None = None,
    title: str | None = None,
    examples: Sequence[Any] = (),
    deprecated: bool = False,
    policy: PolicyHooks | None = None,
    policy_context: PolicyContextProvider | Mapping[str, Any] | None = None,
    digests: bool | DigestOptions | None = None,
    output_validation_mode: OutputValidationMode | str | None = None,
    concurrency: int | None = None,
    timeout_ms: float | None = None,
    telemetry: bool = False,
) -> ToolDefinition:
    """Validate and normalize tool configuration into a ToolDefinition."""

    identity = ToolIdentity(name=name, namespace=namespace or DEFAULT_NAMESPACE, version=version)
    if not isinstance(description, str):
        raise TypeError(f'Tool "{identity.name}": description must be a string')
    if metadata is not None and not isinstance(metadata, Mapping):
        raise TypeError(f'Tool "{identity.name}": metadata must be a mapping')
    if timeout_ms is not None and timeout_ms < 0:
        raise ValueError(f'Tool "{identity.name}": timeout_ms must be at least 0')
    metadata_concurrency = normalize_concurrency((metadata or {}).get("concurrency"))
    return ToolDefinition(
        name=identity.name,
        description=description,
        schema=normalize_schema(schema, name=identity.name),
        output_schema=normalize_schema(output_schema, name=f"{identity.name}-output") if output_schema else None,
        tags=normalize_tags(identity.name, tags, metadata),
        metadata=dict(metadata) if metadata is not None else None,
        namespace=identity.namespace,
        version=identity.version,
        title=title,
        examples=tuple(examples),
        deprecated=deprecated,
        policy=policy,
        policy_context=policy_context,
        digests=digests,
        output_validation_mode=OutputValidationMode(output_validation_mode) if output_validation_mode else None,
        concurrency=metadata_concurrency or normalize_concurrency(concurrency),
        timeout_ms=timeout_ms,
        telemetry=telemetry,
    )


class LazyHandler:
    """Handler whose implementation is loaded on first use.

    Concurrent first calls share one load; a failed load is forgotten so the
    next call tries again.
    """

    def __init__(self, loader: Callable[[], Any] | Awaitable[Any]) -> None:
        self._loader = loader
        self._resolved: Handler | None = None
        self._pending: asyncio.Future[Handler] | None = None

    @property
    def resolved(self) -> bool:
        return self._resolved is not None

    async def resolve(self) -> Handler:
        if self._resolved is not None:
            return self._resolved
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        pending = self._pending
        try:
            return await asyncio.shield(pending)
        except Exception:
            if self._pending is pending and pending.done():
                self._pending = None
            raise

    async def _load(self) -> Handler:
        loader = self._loader
        value = loader if inspect.isawaitable(loader) else loader()
        if inspect.isawaitable(value):
            value = await value
        if not callable(value):
            raise TypeError("lazy handler loader must produce a callable")
        self._resolved = value
        return value

    async def __call__(self, params: Any, context: ToolContext) -> Any:
        handler = await self.resolve()
        result = handler(params, context)
        if inspect.isawaitable(result):
            return await result
        return result


def lazy(loader: Callable[[], Any] | Awaitable[Any]) -> LazyHandler:
    return LazyHandler(loader)


class Tool:
    """Executable handle binding a ToolDefinition to its handler."""

    def __init__(
        self,
        definition: ToolDefinition,
        handler: Handler,
        *,
        dry_run: Handler | None = None,
        policy: PolicyHooks | None = None,
        policy_context: tuple[PolicyContextProvider | Mapping[str, Any] | None, ...] | None = None,
        digests: bool | DigestOptions | None = None,
        output_validation_mode: OutputValidationMode | None = None,
        concurrency: int | None = None,
        telemetry: bool | None = None,
        timeout_ms: float | None = None,
        diagnostics: Diagnostics | None = None,
        context: Mapping[str, Any] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not callable(handler):
            raise TypeError(f'Tool "{definition.name}": handler must be callable')
        self._definition = definition
        self.handler = handler
        self.dry_run_handler = dry_run
        self.policy = policy if policy is not None else definition.policy
        self.policy_context = policy_context if policy_context is not None else (definition.policy_context,)
        self.digests = digests if digests is not None else definition.digests
        self.output_validation_mode = (
            output_validation_mode or definition.output_validation_mode or OutputValidationMode.REPORT
        )
        self.telemetry = telemetry if telemetry is not None else definition.telemetry
        self.default_timeout_ms = definition.timeout_ms if definition.timeout_ms is not None else timeout_ms
        self.diagnostics = diagnostics
        self.context = dict(context or {})
        self.logger = logger or logging.getLogger("toolrack.tools")
        self._events = EventHub(logger=self.logger)
        limit = definition.concurrency if definition.concurrency is not None else concurrency
        self._limiter = create_limiter(limit)

    @property
    def definition(self) -> ToolDefinition:
        return self._definition

    @property
    def identity(self) -> ToolIdentity:
        return self._definition.identity

    @property
    def id(self) -> str:
        return self._definition.id

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def description(self) -> str:
        return self._definition.description

    @property
    def schema(self) -> type[BaseModel]:
        return self._definition.schema

    @property
    def output_schema(self) -> type[BaseModel] | None:
        return self._definition.output_schema

    @property
    def tags(self) -> tuple[str, ...]:
        return self._definition.tags

    @property
    def metadata(self) -> Mapping[str, Any] | None:
        return self._definition.metadata

    @property
    def completed(self) -> bool:
        return self._events.completed

    def on(self, type: str, listener: Listener) -> Callable[[], None]:
        return self._events.on(type, listener)

    add_listener = on

    def once(self, type: str, listener: Listener) -> Callable[[], None]:
        return self._events.once(type, listener)

    def off(self, type: str, listener: Listener) -> None:
        self._events.off(type, listener)

    def dispatch(self, type: str, detail: Mapping[str, Any] | None = None) -> bool:
        return self._events.dispatch(type, detail)

    def events(self, type: str = WILDCARD, *, maxsize: int = 1024) -> AsyncIterator[ToolEvent]:
        return self._events.events(type, maxsize=maxsize)

    def complete(self) -> None:
        self._events.complete()

    async def execute(
        self,
        call: ToolCall | Mapping[str, Any],
        *,
        signal: AbortSignal | None = None,
        timeout_ms: float | None = None,
        dry_run: bool = False,
    ) -> ToolResult:
        """Run one call through validation, policy, and the handler.

        Never raises for handler or validation failures; the outcome is
        reported on the returned ToolResult.
        """

        from toolrack.execution import run_call

        tool_call = coerce_tool_call(call)
        effective_timeout = timeout_ms if timeout_ms is not None else self.default_timeout_ms

        async def _run() -> ToolResult:
            return await run_call(self, tool_call, signal=signal, timeout_ms=effective_timeout, dry_run=dry_run)

        if self._limiter is not None:
            return await self._limiter.run(_run)
        return await _run()

    async def execute_with(
        self,
        params: Any = None,
        *,
        call_id: str | None = None,
        signal: AbortSignal | None = None,
        timeout_ms: float | None = None,
        dry_run: bool = False,
    ) -> ToolResult:
        call = create_tool_call(self.name, params, call_id)
        return await self.execute(call, signal=signal, timeout_ms=timeout_ms, dry_run=dry_run)

    async def invoke(
        self,
        params: Any = None,
        *,
        signal: AbortSignal | None = None,
        timeout_ms: float | None = None,
        dry_run: bool = False,
    ) -> Any:
        """Execute and return the handler's value, raising on any failure."""

        result = await self.execute_with(params, signal=signal, timeout_ms=timeout_ms, dry_run=dry_run)
        if result.outcome is ToolOutcome.ACTION_REQUIRED:
            raise ApprovalRequiredError(result)
        if result.outcome is ToolOutcome.ERROR:
            raise ToolExecutionError(result)
        return result.result

    def to_json(self) -> dict[str, Any]:
        return self._definition.to_json()

    def __repr__(self) -> str:
        return f"Tool(id={self.id!r})"


def create_tool(
    name: str,
    *,
    description: str,
    handler: Handler,
    schema: Any = None,
    dry_run: Handler | None = None,
    diagnostics: Diagnostics | None = None,
    registry: Any = None,
    logger: logging.Logger | None = None,
    **options: Any,
) -> Tool:
    """Define a tool and wrap it in a handle.

    With ``registry`` the tool is registered and the registry's handle, which
    carries registry policy and defaults, is returned.
    """

    definition = define_tool(name, description=description, schema=schema, **options)
    if registry is not None:
        return registry.register_definition(definition, handler, dry_run=dry_run, diagnostics=diagnostics)
    return Tool(definition, handler, dry_run=dry_run, diagnostics=diagnostics, logger=logger)


def is_tool(value: Any) -> bool:
    return isinstance(value, Tool)


__all__ = [
    "DEFAULT_NAMESPACE",
    "Handler",
    "LazyHandler",
    "Tool",
    "ToolDefinition",
    "ToolIdentity",
    "create_tool",
    "define_tool",
    "format_tool_id",
    "is_tool",
    "lazy",
    "parse_tool_id",
]
