"""Shared fixtures: scripted model collaborators and small registries."""

import asyncio
from typing import (
    Any,
    Callable,
    List,
)

import pytest

from stepwise.core.schema import DecisionContext
from stepwise.memory.memory_store import ConversationMemory
from stepwise.tools.registry import (
    ToolRegistry,
    param,
)


class ScriptedPlanner:
    """
    Collaborator that replays a fixed script of decisions.

    Each step is returned as-is, raised if it is an exception, or called with the context if it is
    a callable.  The last step repeats once the script runs out.
    """

    def __init__(self, *steps: Any, delay: float = 0.0):
        self.steps: List[Any] = list(steps)
        self.delay = delay
        self.contexts: List[DecisionContext] = []

    @property
    def calls(self) -> int:
        return len(self.contexts)

    async def decide(self, context: DecisionContext) -> Any:
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        step = self.steps[min(len(self.contexts), len(self.steps)) - 1]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(context)
        return step


@pytest.fixture
def scripted() -> Callable[..., ScriptedPlanner]:
    """Factory for :class:`ScriptedPlanner` instances."""
    return ScriptedPlanner


@pytest.fixture
def memory() -> ConversationMemory:
    return ConversationMemory()


@pytest.fixture
def registry() -> ToolRegistry:
    """Registry with an ``add`` tool and a ``fail`` tool that always raises."""
    reg = ToolRegistry()

    @reg.tool("add", "Add two numbers", [param("a", "number"), param("b", "number")])
    def _add(args):
        return args["a"] + args["b"]

    @reg.tool("fail", "Always raises")
    def _fail(args):
        raise RuntimeError("boom")

    return reg
