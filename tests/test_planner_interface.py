"""Tests for collaborator response parsing and the planner registry."""

import pytest

from stepwise.agent.planner_interface import (
    BasePlanner,
    TGIPlanner,
    _sanitize_json_string,
    load_planner,
    parse_decision,
    render_context,
)
from stepwise.core.schema import (
    ConversationTurn,
    DecisionContext,
    FinalAnswer,
    ToolCallIntent,
    ToolSpec,
    TurnRole,
)
from stepwise.errors import (
    DecisionParseError,
    PlannerError,
)


class _CannedPlanner(BasePlanner):
    """Planner whose model call returns (or raises) a fixed value."""

    def __init__(self, reply):
        self.reply = reply
        self.prompts = []

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


# ---------------------------------------------------------------------------
# parse_decision
# ---------------------------------------------------------------------------
def test_parse_tool_call() -> None:
    """The short tool form becomes a ToolCallIntent."""
    decision = parse_decision('{"tool": "calculator", "args": {"expression": "1+1"}}')

    assert isinstance(decision, ToolCallIntent)
    assert decision.tool_name == "calculator"
    assert decision.arguments == {"expression": "1+1"}


def test_parse_answer_in_fence_with_prose() -> None:
    """Markdown fences and surrounding prose are stripped."""
    raw = 'Sure!\n```json\n{"answer": "The result is {42}."}\n```\nHope that helps.'

    decision = parse_decision(raw)

    assert decision == FinalAnswer(content="The result is {42}.")


def test_parse_tagged_forms() -> None:
    """The canonical tagged variants are accepted, including the camelCase tool call."""
    assert parse_decision('{"kind": "final", "content": "hi"}') == FinalAnswer(content="hi")
    decision = parse_decision('{"kind": "toolCall", "toolName": "add", "arguments": {"a": 1}}')
    assert isinstance(decision, ToolCallIntent) and decision.tool_name == "add"


def test_non_string_answer_is_stringified() -> None:
    """A numeric answer is still a final answer."""
    assert parse_decision('{"answer": 42}') == FinalAnswer(content="42")


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "The answer is 42.",
        "[1, 2]",
        "{}",
        '{"tool": "x", "answer": "y"}',
        '{"tool": "x", "args": [1]}',
        '{"kind": "nonsense"}',
        '{"answer": "unterminated',
    ],
)
def test_uninterpretable_output(raw: str) -> None:
    """Anything but exactly one answer or tool call is a DecisionParseError."""
    with pytest.raises(DecisionParseError):
        parse_decision(raw)


def test_sanitize_keeps_outermost_object() -> None:
    """Braces inside strings do not end the object early."""
    assert _sanitize_json_string('x {"a": "}", "b": {"c": 1}} y') == '{"a": "}", "b": {"c": 1}}'


# ---------------------------------------------------------------------------
# BasePlanner
# ---------------------------------------------------------------------------
def _context() -> DecisionContext:
    return DecisionContext(
        tool_catalog=[
            ToolSpec(
                name="calculator",
                description="Evaluate arithmetic",
                parameters=[{"name": "expression", "type": "string", "required": True}],
            )
        ],
        memory_window=[
            ConversationTurn(role=TurnRole.USER, content="2+2?", sequence=0),
            ConversationTurn(role=TurnRole.TOOL, content="2+2 = 4", sequence=1, name="calculator"),
        ],
        current_input="2+2?",
    )


@pytest.mark.asyncio
async def test_decide_builds_prompts_and_parses() -> None:
    """The catalog goes into the system prompt and the memory into the user prompt."""
    planner = _CannedPlanner('{"answer": "4"}')

    decision = await planner.decide(_context())

    assert decision == FinalAnswer(content="4")
    system_prompt, user_prompt = planner.prompts[0]
    assert "- calculator(expression: string): Evaluate arithmetic" in system_prompt
    assert "Observation [calculator]: 2+2 = 4" in user_prompt
    assert user_prompt.endswith("CURRENT QUERY:\n2+2?")


@pytest.mark.asyncio
async def test_decide_wraps_transport_errors() -> None:
    """SDK / HTTP failures surface as PlannerError with the cause chained."""
    cause = ConnectionError("refused")
    planner = _CannedPlanner(cause)

    with pytest.raises(PlannerError) as info:
        await planner.decide(_context())
    assert info.value.__cause__ is cause


def test_render_context_without_history() -> None:
    """With no memory the prompt is just the current input."""
    assert render_context(DecisionContext(current_input="hello")) == "hello"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
def test_load_planner() -> None:
    """Registered planners are built by name; unknown names are rejected."""
    planner = load_planner("tgi", endpoint="http://tgi.local/generate")
    assert isinstance(planner, TGIPlanner)
    assert planner.endpoint == "http://tgi.local/generate"

    with pytest.raises(ValueError):
        load_planner("does-not-exist")
