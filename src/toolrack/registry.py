"""Tool registry: registration, batch execution, discovery, and inspection."""

from __future__ import annotations

import asyncio
import inspect as _inspect
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from toolrack.concurrency import Budget, BudgetGuard, create_limiter
from toolrack.config import RuntimeSettings, create_embedder
from toolrack.digests import DigestOptions
from toolrack.errors import (
    BudgetExceededError,
    ErrorCategory,
    ToolExecutionError,
    ToolNotFoundError,
)
from toolrack.events import WILDCARD, EventHub, Listener, ToolEvent
from toolrack.inspection import DetailLevel, RegistryInspection, inspect_registry
from toolrack.policy import (
    ApprovalPolicy,
    PolicyContextProvider,
    PolicyHooks,
    approval_policy_hooks,
    combine_hooks,
    merge_policies,
)
from toolrack.search.embeddings import Embedder
from toolrack.search.index import SearchIndex
from toolrack.search.predicates import ToolQuery
from toolrack.search.query import SearchOptions, coerce_search_options, run_query, run_search, search_texts
from toolrack.search.ranking import ToolMatch
from toolrack.tool import Handler, Tool, ToolDefinition, define_tool
from toolrack.types import (
    ErrorMode,
    ExecutionMode,
    OutputValidationMode,
    ToolCall,
    ToolOutcome,
    ToolResult,
    coerce_tool_call,
)

if TYPE_CHECKING:
    from toolrack.diagnostics import Diagnostics
    from toolrack.signals import AbortSignal

ToolFactory = Callable[[ToolDefinition, Handler, Callable[[ToolDefinition, Handler], Tool]], Tool]
Middleware = Callable[[ToolDefinition], ToolDefinition | None]
HandlerResolver = Callable[[ToolDefinition], Handler | None]

RegistryEntry = ToolDefinition | Tool | Mapping[str, Any]


@dataclass(frozen=True)
class RegistryOptions:
    context: Mapping[str, Any] | None = None
    embed: Embedder | None = None
    policy: PolicyHooks | None = None
    policy_context: PolicyContextProvider | Mapping[str, Any] | None = None
    digests: bool | DigestOptions | None = None
    output_validation_mode: OutputValidationMode | None = None
    budget: Budget | Mapping[str, Any] | None = None
    concurrency: int | None = None
    telemetry: bool = False
    read_only: bool = False
    allow_mutation: bool | None = None
    allow_dangerous: bool = True
    approval_policy: ApprovalPolicy = ApprovalPolicy.NEVER
    diagnostics: Diagnostics | None = None
    default_timeout_ms: float | None = None
    tool_factory: ToolFactory | None = None
    resolve_handler: HandlerResolver | None = None
    middleware: Sequence[Middleware] = field(default_factory=tuple)
    logger: logging.Logger | None = None

    @classmethod
    def from_settings(cls, settings: RuntimeSettings, **overrides: Any) -> RegistryOptions:
        """Map loaded runtime settings onto registry options."""

        budget = None
        if settings.budget_max_calls is not None or settings.budget_max_duration_ms is not None:
            budget = Budget(max_calls=settings.budget_max_calls, max_duration_ms=settings.budget_max_duration_ms)
        digests = DigestOptions(algorithm=settings.digest_algorithm) if settings.digests else None
        values: dict[str, Any] = {
            "read_only": settings.read_only,
            "allow_mutation": settings.allow_mutation,
            "allow_dangerous": settings.allow_dangerous,
            "approval_policy": settings.approval_policy,
            "output_validation_mode": settings.output_validation_mode,
            "concurrency": settings.concurrency,
            "default_timeout_ms": settings.default_timeout_ms,
            "telemetry": settings.telemetry,
            "digests": digests,
            "budget": budget,
            "embed": create_embedder(settings),
        }
        values.update(overrides)
        return cls(**values)


class ToolRegistry:
    """Holds tool handles and runs calls against them."""

    def __init__(self, options: RegistryOptions | None = None) -> None:
        self.options = options or RegistryOptions()
        self.logger = self.options.logger or logging.getLogger("toolrack.registry")
        self._by_id: dict[str, Tool] = {}
        self._by_name: dict[str, list[Tool]] = {}
        self._events = EventHub(logger=self.logger)
        budget = Budget.coerce(self.options.budget)
        self._budget = BudgetGuard(budget) if budget is not None else None
        self.search_index = SearchIndex(self.options.embed, logger=self.logger)
        allow_mutation = self.options.allow_mutation
        if allow_mutation is None:
            allow_mutation = not self.options.read_only
        self._allow_mutation = allow_mutation
        self._registry_policy = combine_hooks(self.options.policy, approval_policy_hooks(self.options.approval_policy))

    # events

    def on(self, type: str, listener: Listener) -> Callable[[], None]:
        return self._events.on(type, listener)

    def once(self, type: str, listener: Listener) -> Callable[[], None]:
        return self._events.once(type, listener)

    def off(self, type: str, listener: Listener) -> None:
        self._events.off(type, listener)

    def events(self, type: str = WILDCARD, *, maxsize: int = 1024) -> AsyncIterator[ToolEvent]:
        return self._events.events(type, maxsize=maxsize)

    def complete(self) -> None:
        self._events.complete()

    @property
    def completed(self) -> bool:
        return self._events.completed

    # registration

    def register(self, *entries: RegistryEntry | Iterable[RegistryEntry]) -> ToolRegistry:
        for entry in _flatten(entries):
            if isinstance(entry, Tool):
                self.register_definition(entry.definition, entry.handler, dry_run=entry.dry_run_handler, diagnostics=entry.diagnostics)
            elif isinstance(entry, ToolDefinition):
                self.register_definition(entry, self._resolve_handler(entry))
            elif isinstance(entry, Mapping):
                config = dict(entry)
                handler = config.pop("handler", None)
                dry_run = config.pop("dry_run", None)
                diagnostics = config.pop("diagnostics", None)
                name = config.pop("name", None)
                definition = define_tool(name, **config)
                self.register_definition(
                    definition, handler or self._resolve_handler(definition), dry_run=dry_run, diagnostics=diagnostics
                )
            else:
                raise TypeError(f"cannot register {type(entry).__name__}; expected Tool, ToolDefinition, or mapping")
        return self

    def register_definition(
        self,
        definition: ToolDefinition,
        handler: Handler,
        *,
        dry_run: Handler | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> Tool:
        """Apply middleware, build the registry handle, and index it."""

        for middleware in self.options.middleware:
            updated = middleware(definition)
            if _inspect.isawaitable(updated):
                if _inspect.iscoroutine(updated):
                    updated.close()
                raise TypeError("registry middleware must be synchronous")
            if updated is not None:
                if not isinstance(updated, ToolDefinition):
                    raise TypeError("registry middleware must return a ToolDefinition or None")
                definition = updated

        self._events.dispatch("registering", {"definition": definition})

        def build(target: ToolDefinition, target_handler: Handler) -> Tool:
            return self._build_tool(target, target_handler, dry_run=dry_run, diagnostics=diagnostics)

        if self.options.tool_factory is not None:
            tool = self.options.tool_factory(definition, handler, build)
        else:
            tool = build(definition, handler)
        if not isinstance(tool, Tool):
            raise TypeError("tool_factory must return a Tool")

        previous = self._by_id.get(tool.id)
        if previous is not None:
            self._remove_name_entry(previous)
        self._by_id[tool.id] = tool
        self._by_name.setdefault(tool.name, []).append(tool)
        self.search_index.add(tool)
        self.logger.info("registered tool %s", tool.id)
        self._events.dispatch("registered", {"tool": tool, "definition": definition, "replaced": previous})
        return tool

    def create_tool(
        self,
        name: str,
        *,
        description: str,
        handler: Handler,
        schema: Any = None,
        dry_run: Handler | None = None,
        diagnostics: Diagnostics | None = None,
        **options: Any,
    ) -> Tool:
        definition = define_tool(name, description=description, schema=schema, **options)
        return self.register_definition(definition, handler, dry_run=dry_run, diagnostics=diagnostics)

    def unregister(self, name_or_id: str) -> Tool | None:
        tool = self.get_tool(name_or_id)
        if tool is None:
            return None
        self._by_id.pop(tool.id, None)
        self._remove_name_entry(tool)
        self.search_index.forget(tool.id)
        self._events.dispatch("unregistered", {"tool": tool})
        return tool

    def _remove_name_entry(self, tool: Tool) -> None:
        entries = self._by_name.get(tool.name)
        if not entries:
            return
        self._by_name[tool.name] = [item for item in entries if item.id != tool.id]
        if not self._by_name[tool.name]:
            del self._by_name[tool.name]

    def _resolve_handler(self, definition: ToolDefinition) -> Handler:
        resolver = self.options.resolve_handler
        handler = resolver(definition) if resolver is not None else None
        if handler is None:
            raise ValueError(f'Tool "{definition.name}": no handler available; pass one or set resolve_handler')
        return handler

    def _build_tool(
        self,
        definition: ToolDefinition,
        handler: Handler,
        *,
        dry_run: Handler | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> Tool:
        options = self.options
        policy = merge_policies(
            self._registry_policy,
            definition.policy,
            read_only=options.read_only,
            allow_mutation=self._allow_mutation,
            allow_dangerous=options.allow_dangerous,
            logger=self.logger,
        )
        return Tool(
            definition,
            handler,
            dry_run=dry_run,
            policy=policy,
            policy_context=(options.policy_context, definition.policy_context),
            digests=definition.digests if definition.digests is not None else options.digests,
            output_validation_mode=definition.output_validation_mode or options.output_validation_mode,
            concurrency=options.concurrency,
            telemetry=definition.telemetry or options.telemetry,
            timeout_ms=options.default_timeout_ms,
            diagnostics=diagnostics or options.diagnostics,
            context=options.context,
            logger=options.logger,
        )

    # lookup

    def tools(self) -> list[Tool]:
        return list(self._by_id.values())

    def get_tool(self, name_or_id: str) -> Tool | None:
        """Look up by id first, then the most recent registration under the name."""

        tool = self._by_id.get(name_or_id)
        if tool is not None:
            return tool
        entries = self._by_name.get(name_or_id)
        return entries[-1] if entries else None

    def get_missing_tools(self, names: Iterable[str]) -> list[str]:
        return [name for name in names if self.get_tool(name) is None]

    def has_all_tools(self, names: Iterable[str]) -> bool:
        return not self.get_missing_tools(names)

    def __contains__(self, name_or_id: object) -> bool:
        return isinstance(name_or_id, str) and self.get_tool(name_or_id) is not None

    def __len__(self) -> int:
        return len(self._by_id)

    # execution

    async def execute(
        self,
        calls: ToolCall | Mapping[str, Any] | Sequence[ToolCall | Mapping[str, Any]],
        *,
        mode: ExecutionMode | str = ExecutionMode.PARALLEL,
        error_mode: ErrorMode | str = ErrorMode.COLLECT,
        concurrency: int | None = None,
        signal: AbortSignal | None = None,
        timeout_ms: float | None = None,
        dry_run: bool = False,
    ) -> ToolResult | list[ToolResult]:
        """Execute one call or a batch; batch results keep input order."""

        single = isinstance(calls, (ToolCall, Mapping))
        items = [coerce_tool_call(call) for call in ([calls] if single else calls)]
        fail_fast = ErrorMode(error_mode) is ErrorMode.FAIL_FAST

        async def run_one(call: ToolCall) -> ToolResult:
            result = await self._execute_one(call, signal=signal, timeout_ms=timeout_ms, dry_run=dry_run)
            if fail_fast and result.outcome is ToolOutcome.ERROR:
                _raise_for(result)
            return result

        if ExecutionMode(mode) is ExecutionMode.SEQUENTIAL:
            results = [await run_one(call) for call in items]
        else:
            limiter = create_limiter(concurrency)
            if limiter is None:
                results = list(await asyncio.gather(*(run_one(call) for call in items)))
            else:
                results = list(
                    await asyncio.gather(*(limiter.run(lambda call=call: run_one(call)) for call in items))
                )
        return results[0] if single else results

    async def _execute_one(
        self, call: ToolCall, *, signal: AbortSignal | None, timeout_ms: float | None, dry_run: bool
    ) -> ToolResult:
        tool = self.get_tool(call.name)
        if tool is None:
            message = f"Tool not found: {call.name}"
            self._events.dispatch("not-found", {"call": call, "name": call.name})
            return ToolResult(
                call_id=call.id,
                tool_name=call.name,
                outcome=ToolOutcome.ERROR,
                content=message,
                error=message,
                error_category=ErrorCategory.NOT_FOUND,
                retryable=False,
            )

        self._events.dispatch("call", {"tool": tool, "call": call})
        if self._budget is not None:
            reason = self._budget.check()
            if reason is not None:
                self.logger.warning("%s (tool %s)", reason, tool.name)
                result = ToolResult(
                    call_id=call.id,
                    tool_name=tool.name,
                    outcome=ToolOutcome.ERROR,
                    content=reason,
                    error=reason,
                    error_category=ErrorCategory.BUDGET_EXCEEDED,
                    retryable=False,
                )
                self._events.dispatch("budget-exceeded", {"tool": tool, "call": call, "reason": reason})
                self._events.dispatch("error", {"tool": tool, "call": call, "result": result})
                return result
            self._budget.record_call()

        def bubble(event: ToolEvent) -> None:
            origin = event.detail.get("tool_call")
            if not isinstance(origin, ToolCall) or origin.id != call.id:
                return
            self._events.dispatch(event.type, {**event.detail, "tool": tool, "call": call})

        unsubscribe = tool.on(WILDCARD, bubble)
        try:
            result = await tool.execute(call, signal=signal, timeout_ms=timeout_ms, dry_run=dry_run)
        finally:
            unsubscribe()
        self._events.dispatch(
            "error" if result.outcome is ToolOutcome.ERROR else "complete",
            {"tool": tool, "call": call, "result": result},
        )
        return result

    # discovery

    def query(self, criteria: ToolQuery | Mapping[str, Any] | None = None, **options: Any) -> list[Any]:
        results = run_query(self.tools(), self.search_index, criteria, **options)
        self._events.dispatch("query", {"criteria": criteria, "results": results})
        return results

    def search(self, options: SearchOptions | Mapping[str, Any] | None = None) -> list[ToolMatch]:
        opts = coerce_search_options(options)
        results = run_search(self.tools(), self.search_index, opts)
        self._events.dispatch("search", {"options": opts, "results": results})
        return results

    async def asearch(self, options: SearchOptions | Mapping[str, Any] | None = None) -> list[ToolMatch]:
        """Search after pending tool and query embeddings have resolved."""

        opts = coerce_search_options(options)
        await self.search_index.wait_pending()
        for text in search_texts(opts):
            await self.search_index.aquery_embedding(text)
        return self.search(opts)

    async def warm_embeddings(self) -> None:
        if self.search_index.embeddings is None:
            return
        for tool in self.tools():
            self.search_index.embeddings.warm(tool)
        await self.search_index.wait_pending()

    def reindex(self) -> None:
        self.search_index.reindex(self.tools())

    # introspection

    def inspect(self, detail_level: DetailLevel | str = DetailLevel.STANDARD) -> RegistryInspection:
        return inspect_registry(self.tools(), detail_level)

    def serialize(self) -> list[ToolDefinition]:
        return [tool.definition for tool in self.tools()]

    def to_json(self) -> list[dict[str, Any]]:
        return [tool.to_json() for tool in self.tools()]


def _raise_for(result: ToolResult) -> None:
    if result.error_category is ErrorCategory.NOT_FOUND:
        raise ToolNotFoundError(result.tool_name)
    if result.error_category is ErrorCategory.BUDGET_EXCEEDED:
        raise BudgetExceededError(result.error)
    raise ToolExecutionError(result)


def _flatten(entries: Iterable[Any]) -> Iterable[Any]:
    for entry in entries:
        if isinstance(entry, (Tool, ToolDefinition, Mapping)):
            yield entry
        elif isinstance(entry, Iterable) and not isinstance(entry, str):
            yield from _flatten(entry)
        else:
            yield entry


def create_registry(
    serialized: Iterable[RegistryEntry] = (),
    options: RegistryOptions | None = None,
    **overrides: Any,
) -> ToolRegistry:
    """Build a registry and register ``serialized`` entries into it."""

    resolved = options or RegistryOptions()
    if overrides:
        resolved = replace(resolved, **overrides)
    registry = ToolRegistry(resolved)
    registry.register(serialized)
    return registry


def combine_registries(*registries: ToolRegistry) -> ToolRegistry:
    """Merge registries into a fresh one.

    Tools are re-registered in argument order, so a later registry wins on a
    repeated tool id. Contexts are shallow-merged in the same order.
    """

    if not registries:
        raise TypeError("combine_registries() requires at least one registry")
    context: dict[str, Any] = {}
    for registry in registries:
        if not isinstance(registry, ToolRegistry):
            raise TypeError(f"cannot combine {type(registry).__name__}; expected ToolRegistry")
        context.update(registry.options.context or {})
    combined = ToolRegistry(RegistryOptions(context=context))
    for registry in registries:
        combined.register(registry.tools())
    return combined


__all__ = [
    "HandlerResolver",
    "Middleware",
    "RegistryEntry",
    "RegistryOptions",
    "ToolFactory",
    "ToolRegistry",
    "combine_registries",
    "create_registry",
]
