"""Policy hooks, decision resolution, and registry-wide policy merging."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from toolrack.tool import ToolDefinition
    from toolrack.types import ToolCall, ToolResult


class ApprovalPolicy(str, Enum):
    NEVER = "never"
    ON_REQUEST = "on-request"
    ALWAYS = "always"


class DecisionStatus(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    NEEDS_APPROVAL = "needs_approval"
    NEEDS_INPUT = "needs_input"


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    allow: bool
    reason: str | None = None
    status: DecisionStatus | None = None

    @property
    def requires_action(self) -> bool:
        return self.status in (DecisionStatus.NEEDS_APPROVAL, DecisionStatus.NEEDS_INPUT)

    @classmethod
    def deny(cls, reason: str | None = None) -> PolicyDecision:
        return cls(allow=False, reason=reason, status=DecisionStatus.DENY)

    @classmethod
    def needs_approval(cls, reason: str | None = None) -> PolicyDecision:
        return cls(allow=False, reason=reason, status=DecisionStatus.NEEDS_APPROVAL)

    @classmethod
    def needs_input(cls, reason: str | None = None) -> PolicyDecision:
        return cls(allow=False, reason=reason, status=DecisionStatus.NEEDS_INPUT)


ALLOW = PolicyDecision(allow=True, status=DecisionStatus.ALLOW)


@dataclass(frozen=True, slots=True)
class PolicyContext:
    tool_name: str
    tool_call: ToolCall
    params: Any
    tags: tuple[str, ...]
    metadata: Mapping[str, Any] | None
    definition: ToolDefinition
    input_digest: str | None = None
    dry_run: bool = False
    context: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PolicyAfterContext:
    policy: PolicyContext
    outcome: str
    result: ToolResult | None = None
    error: Any = None


DecisionValue = PolicyDecision | bool | Mapping[str, Any] | None
BeforeHook = Callable[[PolicyContext], DecisionValue | Awaitable[DecisionValue]]
AfterHook = Callable[[PolicyAfterContext], None | Awaitable[None]]
PolicyContextProvider = Callable[[PolicyContext], Mapping[str, Any] | None | Awaitable[Mapping[str, Any] | None]]


@dataclass(frozen=True, slots=True)
class PolicyHooks:
    before_execute: BeforeHook | None = None
    after_execute: AfterHook | None = None


def resolve_decision(value: Any) -> PolicyDecision:
    """Normalize whatever a before-hook returned into a PolicyDecision."""

    if value is None or value is True:
        return ALLOW
    if value is False:
        return PolicyDecision.deny()
    if isinstance(value, PolicyDecision):
        if value.status is None:
            return PolicyDecision(
                allow=value.allow,
                reason=value.reason,
                status=DecisionStatus.ALLOW if value.allow else DecisionStatus.DENY,
            )
        return value
    if isinstance(value, Mapping):
        status = value.get("status")
        allow = bool(value.get("allow", status in (None, DecisionStatus.ALLOW.value)))
        resolved = DecisionStatus(status) if status is not None else None
        return resolve_decision(PolicyDecision(allow=allow, reason=value.get("reason"), status=resolved))
    raise TypeError(f"unsupported policy decision: {type(value).__name__}")


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def evaluate_before(hooks: PolicyHooks | None, context: PolicyContext) -> PolicyDecision:
    if hooks is None or hooks.before_execute is None:
        return ALLOW
    return resolve_decision(await _maybe_await(hooks.before_execute(context)))


async def run_after(hooks: PolicyHooks | None, context: PolicyAfterContext) -> None:
    if hooks is None or hooks.after_execute is None:
        return
    await _maybe_await(hooks.after_execute(context))


def is_mutating(definition: ToolDefinition) -> bool:
    metadata = definition.metadata or {}
    if metadata.get("mutates") is True:
        return True
    if metadata.get("readOnly") is True:
        return False
    tags = {tag.lower() for tag in definition.tags}
    if "mutating" in tags:
        return True
    if "readonly" in tags or "read-only" in tags:
        return False
    return False


def is_dangerous(definition: ToolDefinition) -> bool:
    metadata = definition.metadata or {}
    if metadata.get("dangerous") is True:
        return True
    return "dangerous" in {tag.lower() for tag in definition.tags}


def merge_policies(
    registry_policy: PolicyHooks | None,
    tool_policy: PolicyHooks | None,
    *,
    read_only: bool = False,
    allow_mutation: bool = True,
    allow_dangerous: bool = True,
    logger: logging.Logger | None = None,
) -> PolicyHooks | None:
    """Fold built-in checks, the registry hook, and the tool hook into one.

    Before-checks run built-ins, then the registry hook, then the tool hook; the
    first non-allow decision wins. After-hooks run tool first, then registry,
    and a failing after-hook never fails the other.
    """

    enforce_mutating = read_only or not allow_mutation
    enforce_dangerous = not allow_dangerous
    before_hooks = [
        hooks.before_execute for hooks in (registry_policy, tool_policy) if hooks and hooks.before_execute
    ]
    after_hooks = [hooks.after_execute for hooks in (tool_policy, registry_policy) if hooks and hooks.after_execute]
    if not before_hooks and not after_hooks and not enforce_mutating and not enforce_dangerous:
        return None
    log = logger or logging.getLogger("toolrack.policy")

    async def before_execute(context: PolicyContext) -> PolicyDecision:
        if enforce_mutating and is_mutating(context.definition):
            return PolicyDecision.deny(f'Mutating tool "{context.tool_name}" is not allowed')
        if enforce_dangerous and is_dangerous(context.definition):
            return PolicyDecision.deny(f'Dangerous tool "{context.tool_name}" is not allowed')
        for hook in before_hooks:
            decision = resolve_decision(await _maybe_await(hook(context)))
            if not decision.allow:
                return decision
        return ALLOW

    async def after_execute(context: PolicyAfterContext) -> None:
        for hook in after_hooks:
            try:
                await _maybe_await(hook(context))
            except Exception:
                log.exception("policy after_execute hook failed for %s", context.policy.tool_name)

    return PolicyHooks(before_execute=before_execute, after_execute=after_execute if after_hooks else None)


def approval_policy_hooks(policy: ApprovalPolicy | str) -> PolicyHooks | None:
    """Translate an approval policy into hooks that request approval."""

    policy = ApprovalPolicy(policy)
    if policy == ApprovalPolicy.NEVER:
        return None

    def before_execute(context: PolicyContext) -> PolicyDecision:
        if policy == ApprovalPolicy.ALWAYS:
            return PolicyDecision.needs_approval(f"approval required for tool {context.tool_name}")
        if is_mutating(context.definition) or is_dangerous(context.definition):
            return PolicyDecision.needs_approval(f"approval required for tool {context.tool_name}")
        return ALLOW

    return PolicyHooks(before_execute=before_execute)


def combine_hooks(*hooks: PolicyHooks | None) -> PolicyHooks | None:
    """Chain several hook sets in order; the first non-allow decision wins."""

    present = [item for item in hooks if item is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]

    async def before_execute(context: PolicyContext) -> PolicyDecision:
        for item in present:
            decision = await evaluate_before(item, context)
            if not decision.allow:
                return decision
        return ALLOW

    async def after_execute(context: PolicyAfterContext) -> None:
        for item in present:
            await run_after(item, context)

    return PolicyHooks(before_execute=before_execute, after_execute=after_execute)


async def resolve_policy_context(
    providers: tuple[PolicyContextProvider | Mapping[str, Any] | None, ...], context: PolicyContext
) -> dict[str, Any]:
    """Run each provider in order and merge their mappings, later ones winning."""

    merged: dict[str, Any] = {}
    for provider in providers:
        if provider is None:
            continue
        value = provider if isinstance(provider, Mapping) else await _maybe_await(provider(context))
        if isinstance(value, Mapping):
            merged.update(value)
    return merged


__all__ = [
    "ALLOW",
    "AfterHook",
    "ApprovalPolicy",
    "BeforeHook",
    "DecisionStatus",
    "PolicyAfterContext",
    "PolicyContext",
    "PolicyContextProvider",
    "PolicyDecision",
    "PolicyHooks",
    "approval_policy_hooks",
    "combine_hooks",
    "evaluate_before",
    "is_dangerous",
    "is_mutating",
    "merge_policies",
    "resolve_decision",
    "resolve_policy_context",
    "run_after",
]
