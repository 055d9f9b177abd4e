import asyncio

import pytest

from toolrack.digests import compute_digest
from toolrack.errors import ApprovalRequiredError, ErrorCategory, ToolExecutionError
from toolrack.policy import PolicyDecision, PolicyHooks
from toolrack.signals import AbortController
from toolrack.tool import create_tool
from toolrack.types import ToolOutcome, create_tool_call


@pytest.mark.asyncio
async def test_success_path_emits_events_in_order(sum_tool, recorder) -> None:
    sum_tool.on("*", recorder)

    result = await sum_tool.execute(create_tool_call("sum", {"a": 2, "b": 3}, "c1"))

    assert result.ok
    assert result.result == 5
    assert result.content == 5
    assert result.call_id == "c1"
    assert recorder.types == ["execute-start", "validate-success", "execute-success", "settled"]
    assert recorder.of("settled")[0].detail["tool_result"] is result


@pytest.mark.asyncio
async def test_execute_accepts_mapping_calls(sum_tool) -> None:
    result = await sum_tool.execute({"name": "sum", "arguments": {"a": 1, "b": 1}})
    assert result.result == 2
    assert result.call_id.startswith("call_")


@pytest.mark.asyncio
async def test_handler_receives_parsed_model_and_context() -> None:
    seen = {}

    def handler(params, context):
        seen["params"] = params
        seen["context"] = context
        return "ok"

    tool = create_tool("inspect-args", description="", schema={"x": int}, handler=handler)
    await tool.execute_with({"x": "7"}, call_id="c9", timeout_ms=500)

    assert seen["params"].x == 7
    assert seen["context"].meta.call_id == "c9"
    assert seen["context"].timeout_ms == 500
    assert seen["context"].tool_call.arguments is seen["params"]


@pytest.mark.asyncio
async def test_validation_error_does_not_call_handler(recorder) -> None:
    calls = []
    tool = create_tool("sum", description="", schema={"a": int, "b": int}, handler=lambda p, c: calls.append(p))
    tool.on("*", recorder)

    result = await tool.execute_with({"a": "x"})

    assert result.outcome is ToolOutcome.ERROR
    assert result.error_category is ErrorCategory.VALIDATION
    assert result.error.startswith("ValidationError: a:")
    assert result.retryable is False
    assert {tuple(issue["loc"]) for issue in result.issues} == {("a",), ("b",)}
    assert calls == []
    assert recorder.types == ["execute-start", "validate-error", "settled"]


@pytest.mark.asyncio
async def test_handler_exception_maps_to_internal_error() -> None:
    def handler(params, context):
        raise ValueError("bad input")

    tool = create_tool("broken", description="", handler=handler)
    result = await tool.execute_with()

    assert result.error == "ValueError: bad input"
    assert result.error_category is ErrorCategory.INTERNAL
    assert result.retryable is False
    with pytest.raises(ToolExecutionError) as info:
        await tool.invoke()
    assert info.value.category is ErrorCategory.INTERNAL


@pytest.mark.asyncio
async def test_timeout_is_retryable() -> None:
    async def slow(params, context):
        await asyncio.sleep(5)

    tool = create_tool("slow", description="", handler=slow, timeout_ms=10)
    result = await tool.execute_with()

    assert result.error_category is ErrorCategory.TIMEOUT
    assert result.error == "TIMEOUT: Tool execution timed out after 10ms"
    assert result.retryable is True


@pytest.mark.asyncio
async def test_abort_during_handler_cancels() -> None:
    controller = AbortController()

    async def slow(params, context):
        await asyncio.sleep(5)

    tool = create_tool("slow", description="", handler=slow)
    asyncio.get_running_loop().call_later(0.01, controller.abort, "user stopped")
    result = await tool.execute_with(signal=controller.signal)

    assert result.error_category is ErrorCategory.CANCELLED
    assert result.error == "user stopped"
    assert result.retryable is False


@pytest.mark.asyncio
async def test_pre_aborted_signal_never_starts(sum_tool, recorder) -> None:
    controller = AbortController()
    controller.abort()
    sum_tool.on("*", recorder)

    result = await sum_tool.execute_with({"a": 1, "b": 2}, signal=controller.signal)

    assert result.error == "Cancelled"
    assert "execute-start" not in recorder.types
    assert recorder.types[-1] == "settled"


@pytest.mark.asyncio
async def test_policy_denial(recorder) -> None:
    policy = PolicyHooks(before_execute=lambda ctx: PolicyDecision.deny("not today"))
    tool = create_tool("guarded", description="", handler=lambda p, c: "ran", policy=policy)
    tool.on("*", recorder)

    result = await tool.execute_with()

    assert result.error_category is ErrorCategory.DENIED
    assert result.error == "not today"
    assert recorder.types == ["execute-start", "validate-success", "policy-denied", "settled"]


@pytest.mark.asyncio
async def test_policy_false_uses_default_reason() -> None:
    tool = create_tool("guarded", description="", handler=lambda p, c: "ran", policy=PolicyHooks(lambda ctx: False))
    result = await tool.execute_with()
    assert result.error == "Policy denied"


@pytest.mark.asyncio
async def test_action_required_raises_from_invoke(recorder) -> None:
    policy = PolicyHooks(before_execute=lambda ctx: PolicyDecision.needs_approval("confirm delete"))
    tool = create_tool("delete", description="", handler=lambda p, c: "gone", policy=policy)
    tool.on("*", recorder)

    result = await tool.execute_with()
    assert result.outcome is ToolOutcome.ACTION_REQUIRED
    assert result.action.type == "approval"
    assert result.content == "confirm delete"
    assert "action-required" in recorder.types

    with pytest.raises(ApprovalRequiredError, match="confirm delete"):
        await tool.invoke()


@pytest.mark.asyncio
async def test_policy_sees_injected_context() -> None:
    seen = {}

    def before(ctx):
        seen.update(ctx.context)
        return True

    tool = create_tool(
        "ctx",
        description="",
        handler=lambda p, c: None,
        policy=PolicyHooks(before_execute=before),
        policy_context={"user": "alice"},
    )
    await tool.execute_with()
    assert seen == {"user": "alice"}


@pytest.mark.asyncio
async def test_dry_run_without_handler_skips_execution() -> None:
    calls = []
    tool = create_tool("writer", description="", handler=lambda p, c: calls.append(1))

    result = await tool.execute_with(dry_run=True)

    assert result.ok
    assert result.dry_run is True
    assert result.result is None
    assert calls == []


@pytest.mark.asyncio
async def test_dry_run_handler_is_used() -> None:
    tool = create_tool(
        "writer",
        description="",
        handler=lambda p, c: "wrote",
        dry_run=lambda p, c: f"would write (dry={c.dry_run})",
    )
    assert await tool.invoke(dry_run=True) == "would write (dry=True)"


@pytest.mark.asyncio
async def test_output_validation_report_mode(recorder) -> None:
    tool = create_tool(
        "out", description="", handler=lambda p, c: {"value": "nope"}, output_schema={"value": int}
    )
    tool.on("*", recorder)

    result = await tool.execute_with()

    assert result.ok
    assert result.output_validation.success is False
    assert result.output_validation.error.startswith("value:")
    assert "output-validate-error" in recorder.types


@pytest.mark.asyncio
async def test_output_validation_throw_mode() -> None:
    tool = create_tool(
        "out",
        description="",
        handler=lambda p, c: {"value": "nope"},
        output_schema={"value": int},
        output_validation_mode="throw",
    )
    result = await tool.execute_with()

    assert result.outcome is ToolOutcome.ERROR
    assert result.error_category is ErrorCategory.VALIDATION
    assert result.error.startswith("ValidationError: value:")


@pytest.mark.asyncio
async def test_output_validation_success() -> None:
    tool = create_tool("out", description="", handler=lambda p, c: {"value": 3}, output_schema={"value": int})
    result = await tool.execute_with()
    assert result.output_validation.success is True


@pytest.mark.asyncio
async def test_failing_after_hook_is_logged_not_raised(fake_logger, recorder) -> None:
    def after(ctx):
        raise RuntimeError("audit down")

    logger = fake_logger()
    tool = create_tool(
        "audited", description="", handler=lambda p, c: "ok", policy=PolicyHooks(after_execute=after), logger=logger
    )
    tool.on("*", recorder)

    result = await tool.execute_with()

    assert result.result == "ok"
    assert recorder.of("log")[0].detail["message"] == "policy after_execute failed"
    assert len(logger.warning_calls) == 1


@pytest.mark.asyncio
async def test_after_hook_receives_outcome() -> None:
    outcomes = []
    tool = create_tool(
        "audited",
        description="",
        schema={"n": int},
        handler=lambda p, c: p.n,
        policy=PolicyHooks(after_execute=lambda ctx: outcomes.append(ctx.outcome)),
    )
    await tool.execute_with({"n": 1})
    await tool.execute_with({"n": "bad"})
    assert outcomes == ["success", "error"]


@pytest.mark.asyncio
async def test_digests_and_telemetry(recorder) -> None:
    tool = create_tool(
        "sum",
        description="",
        schema={"a": int, "b": int},
        handler=lambda p, c: p.a + p.b,
        digests=True,
        telemetry=True,
    )
    tool.on("*", recorder)

    result = await tool.execute_with({"b": 2, "a": 1})

    assert result.input_digest == compute_digest({"a": 1, "b": 2})
    assert result.output_digest == compute_digest(3)
    assert recorder.types[0] == "tool.started"
    finished = recorder.of("tool.finished")[0]
    assert finished.detail["status"] == "success"
    assert finished.detail["duration_ms"] >= 0
    assert recorder.types[-2:] == ["tool.finished", "settled"]


@pytest.mark.asyncio
async def test_tool_concurrency_limit_serializes_calls() -> None:
    running = 0
    peak = 0

    async def handler(params, context):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.001)
        running -= 1

    tool = create_tool("serial", description="", handler=handler, concurrency=1)
    await asyncio.gather(*(tool.execute_with() for _ in range(4)))
    assert peak == 1


@pytest.mark.asyncio
async def test_requests_are_logged(sum_tool, mocker) -> None:
    info = mocker.patch.object(sum_tool.logger, "info")

    await sum_tool.execute_with({"a": 1, "b": 2})

    info.assert_called_once_with("tool request: %s args=%s", "sum", '{"a": 1, "b": 2}')


@pytest.mark.asyncio
async def test_pipe_schema_mismatch_names_step(parse_number_tool, sum_tool) -> None:
    from toolrack.combinators import pipe

    with pytest.raises(ToolExecutionError, match=r"step 1 \(sum\)"):
        await pipe(parse_number_tool, sum_tool).invoke({"str": "4"})


@pytest.mark.asyncio
async def test_handler_raising_cancelled_error_still_settles(recorder) -> None:
    async def handler(params, context):
        raise asyncio.CancelledError()

    tool = create_tool("stopped", description="", handler=handler)
    tool.on("*", recorder)

    result = await tool.execute_with()

    assert result.error_category is ErrorCategory.CANCELLED
    assert result.error == "Cancelled"
    assert recorder.types[-2:] == ["execute-error", "settled"]


@pytest.mark.asyncio
async def test_cancelled_inner_task_with_timeout_still_settles() -> None:
    outcomes = []

    async def handler(params, context):
        inner = asyncio.ensure_future(asyncio.sleep(5))
        inner.cancel()
        await inner

    tool = create_tool(
        "stopped",
        description="",
        handler=handler,
        timeout_ms=1000,
        policy=PolicyHooks(after_execute=lambda ctx: outcomes.append(ctx.outcome)),
    )
    result = await tool.execute_with()

    assert result.error_category is ErrorCategory.CANCELLED
    assert outcomes == ["cancelled"]


@pytest.mark.asyncio
async def test_outer_cancellation_still_propagates() -> None:
    started = asyncio.Event()

    async def handler(params, context):
        started.set()
        await asyncio.sleep(5)

    tool = create_tool("slow", description="", handler=handler)
    task = asyncio.ensure_future(tool.execute_with())
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_abort_during_policy_preempts_handler(recorder) -> None:
    controller = AbortController()
    calls = []

    def before(ctx):
        controller.abort("stopped in policy")
        return True

    tool = create_tool(
        "guarded", description="", handler=lambda p, c: calls.append(1), policy=PolicyHooks(before_execute=before)
    )
    tool.on("*", recorder)

    result = await tool.execute_with(signal=controller.signal)

    assert result.error_category is ErrorCategory.CANCELLED
    assert result.error == "stopped in policy"
    assert calls == []
    assert "execute-success" not in recorder.types
    assert recorder.types[-1] == "settled"


@pytest.mark.asyncio
async def test_losing_handler_keeps_running_after_abort() -> None:
    controller = AbortController()
    finished = asyncio.Event()

    async def slow(params, context):
        await asyncio.sleep(0.05)
        finished.set()
        return "late"

    tool = create_tool("slow", description="", handler=slow)
    asyncio.get_running_loop().call_later(0.01, controller.abort)
    result = await tool.execute_with(signal=controller.signal)

    assert result.error_category is ErrorCategory.CANCELLED
    assert not finished.is_set()
    await asyncio.wait_for(finished.wait(), timeout=1)


@pytest.mark.asyncio
async def test_losing_handler_keeps_running_after_timeout() -> None:
    finished = asyncio.Event()

    async def slow(params, context):
        await asyncio.sleep(0.05)
        finished.set()

    tool = create_tool("slow", description="", handler=slow, timeout_ms=10)
    result = await tool.execute_with()

    assert result.error_category is ErrorCategory.TIMEOUT
    assert not finished.is_set()
    await asyncio.wait_for(finished.wait(), timeout=1)
