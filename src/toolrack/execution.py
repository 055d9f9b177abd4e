"""Execution state machine for a single tool call.

Phases: start, validate, policy, invoke, settle. Cancellation is checked at
every boundary and every path produces exactly one ToolResult followed by a
final ``settled`` event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from toolrack.digests import compute_digest, resolve_digest_options
from toolrack.errors import (
    ErrorCategory,
    ToolTimeoutError,
    cancellation_message,
    error_string,
    is_transient,
    normalize_error,
)
from toolrack.limits import stringify_for_log
from toolrack.policy import (
    DecisionStatus,
    PolicyAfterContext,
    PolicyContext,
    PolicyDecision,
    evaluate_before,
    resolve_policy_context,
    run_after,
)
from toolrack.schema import coerce_arguments, describe_validation_error, to_plain, validation_issues
from toolrack.types import (
    ActionRequest,
    OutputValidation,
    OutputValidationMode,
    ToolCall,
    ToolCallMeta,
    ToolContext,
    ToolOutcome,
    ToolResult,
)

if TYPE_CHECKING:
    from toolrack.signals import AbortSignal
    from toolrack.tool import Tool

# handler tasks that lost a timeout/abort race; kept referenced until they finish
_ORPHANED: set[asyncio.Future[Any]] = set()

_log = logging.getLogger("toolrack.execution")


class _Aborted(Exception):
    def __init__(self, reason: Any) -> None:
        super().__init__(cancellation_message(reason))
        self.reason = reason


class _OutputInvalid(Exception):
    def __init__(self, error: ValidationError) -> None:
        super().__init__(describe_validation_error(error))
        self.error = error


def _orphan(task: asyncio.Future[Any]) -> None:
    if task.done():
        _consume(task)
        return
    _ORPHANED.add(task)
    task.add_done_callback(_consume)


def _consume(task: asyncio.Future[Any]) -> None:
    _ORPHANED.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        _log.debug("late handler failure ignored: %s", error)


def _cancel_requested() -> bool:
    current = asyncio.current_task()
    return current is not None and current.cancelling() > 0


def _scoped_dispatch(tool: Tool, call: ToolCall) -> Callable[..., bool]:
    """Dispatch on ``tool`` with every detail tagged by the originating call."""

    def dispatch(type: str, detail: Mapping[str, Any] | None = None) -> bool:
        return tool.dispatch(type, {**(detail or {}), "tool_call": call})

    return dispatch


async def race_handler(value: Any, signal: AbortSignal | None, timeout_ms: float | None) -> Any:
    """Await ``value`` against the signal and a timer; the first to settle wins."""

    if not inspect.isawaitable(value):
        return value
    task = asyncio.ensure_future(value)
    if signal is None and timeout_ms is None:
        return await task

    loop = asyncio.get_running_loop()
    waiters: set[asyncio.Future[Any]] = {task}
    aborted: asyncio.Future[Any] | None = None
    unsubscribe = None
    if signal is not None:
        aborted = loop.create_future()

        def _on_abort(reason: Any) -> None:
            if not aborted.done():
                aborted.set_result(reason)

        unsubscribe = signal.add_listener(_on_abort)
        waiters.add(aborted)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=timeout_ms / 1000 if timeout_ms is not None else None,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if unsubscribe is not None:
            unsubscribe()
        if aborted is not None and not aborted.done():
            aborted.cancel()

    if aborted is not None and aborted in done:
        _orphan(task)
        raise _Aborted(signal.reason if signal is not None else None)
    if task in done:
        return task.result()
    _orphan(task)
    raise ToolTimeoutError(timeout_ms or 0)


def _now_ms() -> float:
    return time.time() * 1000


class _CallRun:
    """Carries per-call state through the phases."""

    def __init__(
        self, tool: Tool, call: ToolCall, signal: AbortSignal | None, timeout_ms: float | None, dry_run: bool
    ) -> None:
        self.tool = tool
        self.definition = tool.definition
        self.call = call
        self.signal = signal
        self.timeout_ms = timeout_ms
        self.dry_run = dry_run
        self.digests = resolve_digest_options(tool.digests)
        self.input_digest: str | None = None
        self.started_at = _now_ms()
        self._started = time.monotonic()
        self.settled = False

    @property
    def base(self) -> dict[str, Any]:
        return {"tool_call": self.call, "definition": self.definition}

    def emit(self, type: str, /, **detail: Any) -> None:
        self.tool.dispatch(type, {**self.base, **detail})

    @property
    def aborted(self) -> bool:
        return self.signal is not None and self.signal.aborted

    def policy_context(self, params: Any, injected: dict[str, Any] | None = None) -> PolicyContext:
        return PolicyContext(
            tool_name=self.definition.name,
            tool_call=self.call,
            params=params,
            tags=self.definition.tags,
            metadata=self.definition.metadata,
            definition=self.definition,
            input_digest=self.input_digest,
            dry_run=self.dry_run,
            context=injected or {},
        )

    async def injected_context(self, params: Any) -> PolicyContext:
        context = self.policy_context(params)
        injected = await resolve_policy_context(self.tool.policy_context, context)
        return replace(context, context=injected) if injected else context

    async def after(self, context: PolicyContext | None, outcome: str, result: ToolResult, error: Any = None) -> None:
        if self.tool.policy is None or self.tool.policy.after_execute is None:
            return
        try:
            if context is None:
                context = await self.injected_context(self.call.arguments)
            await run_after(self.tool.policy, PolicyAfterContext(policy=context, outcome=outcome, result=result, error=error))
        except Exception as exc:
            self.tool.logger.warning("policy after_execute failed for %s: %s", self.definition.name, exc)
            self.emit("log", level="warn", message="policy after_execute failed", data=exc)

    def result(self, outcome: ToolOutcome, /, **fields: Any) -> ToolResult:
        return ToolResult(
            call_id=self.call.id,
            tool_name=self.definition.name,
            outcome=outcome,
            input_digest=self.input_digest,
            dry_run=self.dry_run,
            **fields,
        )

    def finish(self, result: ToolResult, status: str, /, **detail: Any) -> ToolResult:
        if self.tool.telemetry:
            finished_at = _now_ms()
            self.emit(
                "tool.finished",
                status=status,
                started_at=self.started_at,
                finished_at=finished_at,
                duration_ms=(time.monotonic() - self._started) * 1000,
                input_digest=self.input_digest,
                output_digest=result.output_digest,
                error_category=result.error_category,
                dry_run=self.dry_run,
            )
        self.emit("settled", tool_result=result, **detail)
        self.settled = True
        self.tool.logger.debug(
            "tool response: %s outcome=%s result=%s",
            self.definition.name,
            result.outcome.value,
            stringify_for_log(result.error if result.error is not None else result.result),
        )
        return result

    async def cancelled(self, reason: Any, context: PolicyContext | None = None) -> ToolResult:
        message = cancellation_message(reason)
        result = self.result(
            ToolOutcome.ERROR,
            content=message,
            error=message,
            error_category=ErrorCategory.CANCELLED,
            retryable=False,
        )
        self.emit("execute-error", error=reason, error_category=ErrorCategory.CANCELLED)
        await self.after(context, "cancelled", result, reason)
        return self.finish(result, "cancelled", error=reason)


async def run_call(
    tool: Tool,
    call: ToolCall,
    *,
    signal: AbortSignal | None = None,
    timeout_ms: float | None = None,
    dry_run: bool = False,
) -> ToolResult:
    run = _CallRun(tool, call, signal, timeout_ms, dry_run)
    definition = run.definition
    tool.logger.info("tool request: %s args=%s", definition.name, stringify_for_log(call.arguments))

    if run.digests.input:
        run.input_digest = compute_digest(to_plain(call.arguments), run.digests.algorithm)
    if tool.telemetry:
        run.emit(
            "tool.started",
            params=call.arguments,
            started_at=run.started_at,
            input_digest=run.input_digest,
            dry_run=dry_run,
        )

    if run.aborted:
        return await run.cancelled(signal.reason)
    run.emit("execute-start", params=call.arguments, dry_run=dry_run)
    if run.aborted:
        return await run.cancelled(signal.reason)

    try:
        parsed = definition.schema.model_validate(coerce_arguments(call.arguments))
    except ValidationError as exc:
        return await _validation_failed(run, exc)
    run.call = typed_call = replace(call, arguments=parsed)
    run.emit("validate-success", params=call.arguments, parsed=parsed)

    context: PolicyContext | None = None
    try:
        if run.aborted:
            return await run.cancelled(signal.reason)
        context = await run.injected_context(parsed)
        decision = await evaluate_before(tool.policy, context)
        if not decision.allow:
            return await _blocked(run, context, decision)
        if run.aborted:
            return await run.cancelled(signal.reason, context)

        handler = tool.dry_run_handler if dry_run else tool.handler
        if dry_run and handler is None:
            result = run.result(ToolOutcome.SUCCESS)
            run.emit("execute-success", result=None, dry_run=True)
            await run.after(context, "success", result)
            return run.finish(result, "success", result=None)

        handler_context = ToolContext(
            dispatch=_scoped_dispatch(tool, typed_call),
            meta=ToolCallMeta(tool_name=definition.name, call_id=typed_call.id),
            tool_call=typed_call,
            definition=definition,
            signal=signal,
            timeout_ms=timeout_ms,
            dry_run=dry_run,
            extras=tool.context,
        )
        if run.aborted:
            return await run.cancelled(signal.reason, context)
        value = await race_handler(handler(parsed, handler_context), signal, timeout_ms)
        output_validation = _validate_output(run, value)
        output_digest = compute_digest(to_plain(value), run.digests.algorithm) if run.digests.output else None
        result = run.result(
            ToolOutcome.SUCCESS,
            content=value,
            result=value,
            output_digest=output_digest,
            output_validation=output_validation,
        )
        run.emit("execute-success", result=value)
        await run.after(context, "success", result)
        return run.finish(result, "success", result=value)
    except _Aborted as exc:
        return await run.cancelled(exc.reason, context)
    except asyncio.CancelledError:
        # only the handler was cancelled; a cancelled caller still unwinds
        if _cancel_requested():
            raise
        return await run.cancelled(signal.reason if run.aborted else None, context)
    except _OutputInvalid as exc:
        message = f"ValidationError: {exc}"
        result = run.result(
            ToolOutcome.ERROR,
            content=message,
            error=message,
            error_category=ErrorCategory.VALIDATION,
            retryable=False,
            issues=validation_issues(exc.error),
        )
        run.emit("execute-error", error=exc.error, error_category=ErrorCategory.VALIDATION)
        await run.after(context, "error", result, exc.error)
        return run.finish(result, "error", error=exc.error)
    except Exception as exc:
        if run.aborted:
            return await run.cancelled(signal.reason, context)
        timed_out = isinstance(exc, ToolTimeoutError)
        category = ErrorCategory.TIMEOUT if timed_out else ErrorCategory.INTERNAL
        message = error_string(normalize_error(exc))
        result = run.result(
            ToolOutcome.ERROR,
            content=message,
            error=message,
            error_category=category,
            retryable=True if timed_out else is_transient(exc),
        )
        run.emit("execute-error", error=exc, error_category=category)
        await run.after(context, "error", result, exc)
        return run.finish(result, "error", error=exc)


async def _validation_failed(run: _CallRun, error: ValidationError) -> ToolResult:
    report = None
    repair_hints = None
    diagnostics = run.tool.diagnostics
    if diagnostics is not None:
        try:
            diagnosed = diagnostics.safe_parse_with_report(run.definition.schema, run.call.arguments)
            report = diagnosed.report
            hint_error = diagnosed.error if diagnosed.error is not None else error
            repair_hints = list(diagnostics.create_repair_hints(hint_error, root_label="arguments"))
        except Exception as exc:
            run.tool.logger.debug("validation diagnostics failed: %s", exc)

    message = f"ValidationError: {describe_validation_error(error)}"
    issues = validation_issues(error)
    result = run.result(
        ToolOutcome.ERROR,
        content=message,
        error=message,
        error_category=ErrorCategory.VALIDATION,
        retryable=False,
        issues=issues,
    )
    run.emit(
        "validate-error",
        params=run.call.arguments,
        error=error,
        issues=issues,
        report=report,
        repair_hints=repair_hints,
    )
    await run.after(None, "error", result, error)
    return run.finish(result, "error", error=error)


async def _blocked(run: _CallRun, context: PolicyContext, decision: PolicyDecision) -> ToolResult:
    if decision.requires_action:
        action_type = "approval" if decision.status is DecisionStatus.NEEDS_APPROVAL else "input"
        reason = decision.reason or f"{action_type} required for tool {run.definition.name}"
        action = ActionRequest(type=action_type, reason=reason)
        result = run.result(ToolOutcome.ACTION_REQUIRED, content=reason, action=action)
        run.emit("action-required", params=context.params, action=action, decision=decision)
        await run.after(context, "action_required", result)
        return run.finish(result, "action_required", action=action)

    reason = decision.reason or "Policy denied"
    result = run.result(
        ToolOutcome.ERROR,
        content=reason,
        error=reason,
        error_category=ErrorCategory.DENIED,
        retryable=False,
    )
    run.emit("policy-denied", params=context.params, reason=reason)
    await run.after(context, "denied", result)
    return run.finish(result, "denied", error=reason)


def _validate_output(run: _CallRun, value: Any) -> OutputValidation | None:
    schema = run.definition.output_schema
    if schema is None:
        return None
    try:
        schema.model_validate(coerce_arguments(value) if value is not None else value)
    except ValidationError as exc:
        run.emit("output-validate-error", result=value, error=exc)
        if run.tool.output_validation_mode is OutputValidationMode.THROW:
            raise _OutputInvalid(exc) from exc
        return OutputValidation(success=False, error=describe_validation_error(exc))
    run.emit("output-validate-success", result=value)
    return OutputValidation(success=True)


__all__ = ["race_handler", "run_call"]
