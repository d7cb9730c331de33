"""Tests for the agent loop state machine."""

import asyncio

import pytest

from stepwise.agent.agent_loop import (
    AgentLoop,
    AgentState,
)
from stepwise.core.schema import (
    AgentStatus,
    FinalAnswer,
    ToolCallIntent,
    TurnRole,
)
from stepwise.errors import (
    PlannerError,
    RunFailedError,
)
from stepwise.tools.registry import (
    ToolRegistry,
    param,
)


def _call(tool: str, **arguments) -> ToolCallIntent:
    return ToolCallIntent(tool_name=tool, arguments=arguments)


def _final(text: str) -> FinalAnswer:
    return FinalAnswer(content=text)


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_direct_answer(scripted, registry, memory) -> None:
    """A final answer on the first decision ends the run in DONE."""
    planner = scripted(_final("hello"))
    loop = AgentLoop(planner, registry, memory, max_iterations=3)

    result = await loop.run("s1", "hi")

    assert result.status is AgentStatus.DONE
    assert result.content == "hello"
    assert (result.decisions, result.iterations) == (1, 0)
    assert [(t.role, t.content) for t in memory.read("s1")] == [
        (TurnRole.USER, "hi"),
        (TurnRole.AGENT, "hello"),
    ]


@pytest.mark.asyncio
async def test_tool_call_then_answer(scripted, registry, memory) -> None:
    """A tool result is recorded as an observation and shown to the next decision."""
    planner = scripted(_call("add", a=2, b=3), _final("2 + 3 is 5"))
    loop = AgentLoop(planner, registry, memory, max_iterations=3)

    result = await loop.run("s1", "what is 2 + 3?")

    assert result.ok and result.content == "2 + 3 is 5"
    assert (result.decisions, result.iterations) == (2, 1)

    turns = memory.read("s1")
    assert [t.role for t in turns] == [TurnRole.USER, TurnRole.TOOL, TurnRole.AGENT]
    assert turns[1].name == "add"
    assert turns[1].content == "5"
    assert turns[1].metadata["ok"] is True

    second = planner.contexts[1]
    assert second.current_input == "what is 2 + 3?"
    assert second.memory_window[-1].content == "5"
    assert [spec.name for spec in second.tool_catalog] == ["add", "fail"]


@pytest.mark.asyncio
async def test_dict_decisions_are_accepted(scripted, registry, memory) -> None:
    """Tagged mappings are interpreted like decision models."""
    planner = scripted(
        {"kind": "toolCall", "toolName": "add", "arguments": {"a": 1, "b": 1}},
        {"kind": "final", "content": "2"},
    )
    loop = AgentLoop(planner, registry, memory, max_iterations=1)

    result = await loop.run("s1", "1+1")

    assert result.ok and result.content == "2"


# ---------------------------------------------------------------------------
# Recoverable tool failures
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_validation_error_is_folded_back(scripted, registry, memory) -> None:
    """Invalid arguments become an observation and the collaborator can retry."""
    planner = scripted(_call("add", a=2), _call("add", a=2, b=3), _final("5"))
    loop = AgentLoop(planner, registry, memory, max_iterations=5)

    result = await loop.run("s1", "add")

    assert result.ok and result.content == "5"
    failed = memory.read("s1")[1]
    assert failed.role is TurnRole.TOOL
    assert failed.content.startswith("Error: Invalid arguments for tool 'add'")
    assert failed.metadata["error_kind"] == "ValidationError"


@pytest.mark.asyncio
async def test_handler_fault_and_unknown_tool_are_recoverable(scripted, registry, memory) -> None:
    """Handler faults and unknown tools are observations, not run failures."""
    planner = scripted(_call("fail"), _call("nope"), _final("gave up politely"))
    loop = AgentLoop(planner, registry, memory, max_iterations=5)

    result = await loop.run("s1", "try")

    assert result.ok
    kinds = [t.metadata.get("error_kind") for t in memory.read("s1") if t.role is TurnRole.TOOL]
    assert kinds == ["ToolExecutionError", "UnknownToolError"]


@pytest.mark.asyncio
async def test_tool_timeout_is_recoverable(scripted, memory) -> None:
    """A tool exceeding its timeout is reported as a failed observation."""
    registry = ToolRegistry()

    @registry.tool("slow", "")
    async def slow(args):
        await asyncio.sleep(5)

    planner = scripted(_call("slow"), _final("too slow"))
    loop = AgentLoop(planner, registry, memory, max_iterations=2, tool_timeout=0.01)

    result = await loop.run("s1", "go")

    assert result.ok
    observation = memory.read("s1")[1]
    assert "timed out" in observation.content
    assert observation.metadata["error_kind"] == "ToolExecutionError"


# ---------------------------------------------------------------------------
# Terminal failures
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_iteration_limit_after_max_plus_one_decisions(scripted, registry, memory) -> None:
    """With max_iterations=2 and a collaborator that never answers, 3 decisions then FAILED."""
    planner = scripted(_call("add", a=1, b=1))
    loop = AgentLoop(planner, registry, memory, max_iterations=2)

    result = await loop.run("s1", "loop forever")

    assert result.status is AgentStatus.FAILED
    assert result.error_kind == "IterationLimitExceeded"
    assert planner.calls == 3
    assert (result.decisions, result.iterations) == (3, 2)
    # best-effort last answer: the last successful observation
    assert result.content == "2"


@pytest.mark.asyncio
@pytest.mark.parametrize("max_iterations", [0, 1, 4])
async def test_termination_bound(scripted, registry, memory, max_iterations) -> None:
    """The loop never makes more than max_iterations + 1 decisions."""
    planner = scripted(_call("fail"))
    loop = AgentLoop(planner, registry, memory, max_iterations=max_iterations)

    result = await loop.run("s1", "x")

    assert result.status is AgentStatus.FAILED
    assert planner.calls == max_iterations + 1
    assert result.content is None


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", ["just some prose", {"kind": "unknown"}, {"kind": "final"}, 42])
async def test_uninterpretable_decision_fails_run(scripted, registry, memory, bad) -> None:
    """Anything but a final answer or a tool call is a DecisionParseError."""
    loop = AgentLoop(scripted(bad), registry, memory, max_iterations=3)

    result = await loop.run("s1", "x")

    assert result.status is AgentStatus.FAILED
    assert result.error_kind == "DecisionParseError"
    assert result.decisions == 1
    with pytest.raises(RunFailedError) as info:
        result.raise_for_status()
    assert info.value.error_kind == "DecisionParseError"


@pytest.mark.asyncio
async def test_planner_error_fails_run(scripted, registry, memory) -> None:
    """Collaborator transport failures end the run."""
    loop = AgentLoop(scripted(PlannerError("503")), registry, memory, max_iterations=3)

    result = await loop.run("s1", "x")

    assert result.error_kind == "PlannerError"
    assert "503" in result.error


@pytest.mark.asyncio
async def test_decision_timeout(scripted, registry, memory) -> None:
    """A slow collaborator ends the run with DecisionTimeoutError."""
    planner = scripted(_final("late"), delay=5)
    loop = AgentLoop(planner, registry, memory, max_iterations=3, decision_timeout=0.01)

    result = await loop.run("s1", "x")

    assert result.error_kind == "DecisionTimeoutError"


@pytest.mark.asyncio
async def test_cancel_before_first_decision(scripted, registry, memory) -> None:
    """A set cancel event stops the run before the collaborator is asked."""
    planner = scripted(_final("never"))
    loop = AgentLoop(planner, registry, memory, max_iterations=3)
    cancel = asyncio.Event()
    cancel.set()

    result = await loop.run("s1", "x", cancel_event=cancel)

    assert result.error_kind == "RunCancelledError"
    assert planner.calls == 0


@pytest.mark.asyncio
async def test_cancel_between_steps(scripted, memory) -> None:
    """Cancelling during a tool call takes effect at the next THINKING boundary."""
    cancel = asyncio.Event()
    registry = ToolRegistry()

    @registry.tool("stop", "")
    def stop(args):
        cancel.set()
        return "stopping"

    planner = scripted(_call("stop"), _final("unreachable"))
    loop = AgentLoop(planner, registry, memory, max_iterations=3)

    result = await loop.run("s1", "x", cancel_event=cancel)

    assert result.error_kind == "RunCancelledError"
    assert planner.calls == 1
    assert memory.read("s1")[-1].content == "stopping"


@pytest.mark.asyncio
async def test_raising_collaborator_is_wrapped_as_planner_error(scripted, registry, memory) -> None:
    """A collaborator raising a non-stepwise exception still ends the run in FAILED."""
    loop = AgentLoop(
        scripted(ConnectionError("network down")), registry, memory, max_iterations=3
    )

    result = await loop.run("s1", "x")

    assert result.status is AgentStatus.FAILED
    assert result.error_kind == "PlannerError"
    assert "network down" in result.error
    assert [t.role for t in memory.read("s1")] == [TurnRole.USER]


@pytest.mark.asyncio
async def test_task_cancellation_propagates(scripted, registry, memory) -> None:
    """Cancelling the task running the loop is not turned into a FAILED result."""
    loop = AgentLoop(scripted(_final("late"), delay=5), registry, memory, max_iterations=1)

    task = asyncio.create_task(loop.run("s1", "x"))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert loop.active_sessions == []


# ---------------------------------------------------------------------------
# Memory window and concurrency
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_memory_window_limits_context(scripted, registry, memory) -> None:
    """Only the configured number of recent turns reach the collaborator."""
    for i in range(6):
        memory.record("s1", TurnRole.USER, f"old {i}")
    planner = scripted(_final("ok"))
    loop = AgentLoop(planner, registry, memory, max_iterations=1, memory_window=2)

    await loop.run("s1", "new")

    assert [t.content for t in planner.contexts[0].memory_window] == ["old 5", "new"]


@pytest.mark.asyncio
async def test_independent_sessions_run_concurrently(scripted, registry, memory) -> None:
    """Runs on different keys interleave without sharing memory."""
    planner = scripted(lambda ctx: _final(f"echo {ctx.current_input}"), delay=0.01)
    loop = AgentLoop(planner, registry, memory, max_iterations=1)

    first, second = await asyncio.gather(loop.run("a", "one"), loop.run("b", "two"))

    assert (first.content, second.content) == ("echo one", "echo two")
    assert [t.content for t in memory.read("a")] == ["one", "echo one"]
    assert [t.content for t in memory.read("b")] == ["two", "echo two"]


@pytest.mark.asyncio
async def test_same_session_runs_are_serialized(scripted, registry, memory) -> None:
    """Two runs on one key never interleave their turns."""
    planner = scripted(lambda ctx: _final(f"echo {ctx.current_input}"), delay=0.01)
    loop = AgentLoop(planner, registry, memory, max_iterations=1)

    await asyncio.gather(loop.run("s", "one"), loop.run("s", "two"))

    assert [t.content for t in memory.read("s")] == ["one", "echo one", "two", "echo two"]


@pytest.mark.asyncio
async def test_session_locks_released_after_runs(scripted, registry, memory) -> None:
    """Per-session locks exist only while a run on that key holds or awaits them."""
    seen = []

    def answer(ctx):
        seen.append(sorted(loop.active_sessions))
        return _final("ok")

    planner = scripted(answer, delay=0.01)
    loop = AgentLoop(planner, registry, memory, max_iterations=1)

    await asyncio.gather(loop.run("s", "one"), loop.run("s", "two"), loop.run("t", "three"))
    assert loop.active_sessions == []
    assert ["s", "t"] in seen

    for i in range(20):
        await loop.run(f"key-{i}", "x")
    assert loop.active_sessions == []

    # a failed run releases its lock too
    failing = AgentLoop(scripted(ConnectionError("down")), registry, memory, max_iterations=1)
    await failing.run("s", "x")
    assert failing.active_sessions == []


# ---------------------------------------------------------------------------
# Construction / state machine
# ---------------------------------------------------------------------------
def test_negative_max_iterations_rejected(scripted, registry, memory) -> None:
    """max_iterations must be >= 0."""
    with pytest.raises(ValueError):
        AgentLoop(scripted(_final("x")), registry, memory, max_iterations=-1)


def test_illegal_transition_rejected() -> None:
    """Terminal states have no outgoing transitions; ACTING cannot jump to DONE."""
    state = AgentState(session_key="s")
    state.advance(AgentStatus.ACTING)
    with pytest.raises(RuntimeError):
        state.advance(AgentStatus.DONE)

    state.advance(AgentStatus.OBSERVING)
    state.advance(AgentStatus.THINKING)
    state.advance(AgentStatus.DONE)
    assert state.terminal
    with pytest.raises(RuntimeError):
        state.advance(AgentStatus.THINKING)
