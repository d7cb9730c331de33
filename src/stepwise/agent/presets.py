"""Ready-made agents and pipelines used by the API and the CLI."""

from typing import (
    Mapping,
    Optional,
)

from stepwise.agent.agent_loop import AgentLoop
from stepwise.agent.pipeline import (
    AgentPipeline,
    PipelineStage,
)
from stepwise.agent.planner_interface import ModelCollaborator
from stepwise.config import settings
from stepwise.memory.memory_store import ConversationMemory
from stepwise.tools.calculator import calculator_tool
from stepwise.tools.content import (
    editor_tools,
    research_tools,
    writer_tools,
)
from stepwise.tools.notes import (
    NoteStore,
    build_note_tools,
)
from stepwise.tools.orders import (
    OrderStore,
    build_order_tools,
)
from stepwise.tools.registry import ToolRegistry
from stepwise.tools.todos import (
    TodoStore,
    build_todo_tools,
)
from stepwise.tools.utility import utility_tools

DEFAULT_INVENTORY: Mapping[str, int] = {"laptop": 10, "phone": 15, "headphones": 20}


def build_assistant_registry(
    orders: OrderStore,
    todos: TodoStore,
    notes: Optional[NoteStore] = None,
) -> ToolRegistry:
    """Calculator, weather/time, order workflow, todo and note tools in one registry."""
    registry = ToolRegistry([calculator_tool()])
    registry.register_many(utility_tools())
    registry.register_many(build_order_tools(orders))
    registry.register_many(build_todo_tools(todos))
    registry.register_many(build_note_tools(notes if notes is not None else NoteStore()))
    return registry


def _loop_options(max_iterations: Optional[int]) -> dict:
    return {
        "max_iterations": settings.MAX_ITERATIONS if max_iterations is None else max_iterations,
        "memory_window": settings.MEMORY_WINDOW,
        "decision_timeout": settings.DECISION_TIMEOUT,
        "tool_timeout": settings.TOOL_TIMEOUT,
    }


def build_assistant(
    planner: ModelCollaborator,
    memory: ConversationMemory,
    orders: OrderStore,
    todos: TodoStore,
    max_iterations: Optional[int] = None,
    notes: Optional[NoteStore] = None,
) -> AgentLoop:
    """The general-purpose assistant agent, configured from ``settings``."""
    return AgentLoop(
        planner,
        build_assistant_registry(orders, todos, notes),
        memory,
        name="assistant",
        **_loop_options(max_iterations),
    )


def build_content_pipeline(
    planner: ModelCollaborator,
    memory: ConversationMemory,
    max_iterations: Optional[int] = None,
) -> AgentPipeline:
    """Researcher -> writer -> editor pipeline; each stage has its own tools and memory key."""
    options = _loop_options(max_iterations)
    researcher = AgentLoop(
        planner, ToolRegistry(research_tools()), memory, name="researcher", **options
    )
    writer = AgentLoop(planner, ToolRegistry(writer_tools()), memory, name="writer", **options)
    editor = AgentLoop(planner, ToolRegistry(editor_tools()), memory, name="editor", **options)
    return AgentPipeline(
        [
            PipelineStage(
                researcher,
                transform=lambda notes: f"Write an article based on this research: {notes}",
            ),
            PipelineStage(writer, transform=lambda article: f"Review this article: {article}"),
            PipelineStage(editor),
        ],
        name="content",
    )
