"""Todo-list tools for the personal assistant agent."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    List,
)

from stepwise.tools.registry import (
    ToolDescriptor,
    param,
)

PRIORITIES = ("high", "medium", "low")
FILTERS = ("all", "pending", "completed")


@dataclass
class TodoItem:
    """A single todo entry."""

    todo_id: int
    task: str
    priority: str
    completed: bool = False

    def render(self) -> str:
        """One-line representation used in tool output."""
        mark = "x" if self.completed else " "
        return f"{self.todo_id}. [{mark}] ({self.priority}) {self.task}"


class TodoStore:
    """Todo list owned by the application and shared by the todo tools."""

    def __init__(self) -> None:
        self._items: List[TodoItem] = []
        self._lock = asyncio.Lock()

    def items(self, status: str = "all") -> List[TodoItem]:
        """Items filtered by *status* (``all``, ``pending`` or ``completed``)."""
        if status == "pending":
            return [item for item in self._items if not item.completed]
        if status == "completed":
            return [item for item in self._items if item.completed]
        return list(self._items)

    async def add(self, task: str, priority: str) -> TodoItem:
        """Append a new pending item."""
        async with self._lock:
            item = TodoItem(todo_id=len(self._items) + 1, task=task, priority=priority)
            self._items.append(item)
        return item

    async def complete(self, todo_id: int) -> TodoItem:
        """Mark an item as completed."""
        async with self._lock:
            for item in self._items:
                if item.todo_id == todo_id:
                    item.completed = True
                    return item
        raise KeyError(f"No todo item with id {todo_id}")


def build_todo_tools(store: TodoStore) -> List[ToolDescriptor]:
    """Build ``add_todo``, ``list_todos`` and ``complete_todo`` for *store*."""

    async def add_todo(args: Dict[str, Any]) -> str:
        item = await store.add(args["task"], args["priority"])
        return f"Added todo {item.todo_id}: '{item.task}' (priority: {item.priority})"

    def list_todos(args: Dict[str, Any]) -> str:
        items = store.items(args["filter"])
        if not items:
            return "No todo items."
        return "\n".join(item.render() for item in items)

    async def complete_todo(args: Dict[str, Any]) -> str:
        item = await store.complete(args["id"])
        return f"Todo '{item.task}' marked as completed."

    return [
        ToolDescriptor(
            name="add_todo",
            description="Add an item to the todo list.",
            handler=add_todo,
            parameters=(
                param("task", "string", description="What needs doing"),
                param("priority", "string", choices=PRIORITIES, description="Priority"),
            ),
        ),
        ToolDescriptor(
            name="list_todos",
            description="List todo items, optionally filtered by status.",
            handler=list_todos,
            parameters=(
                param("filter", "string", required=False, default="all", choices=FILTERS),
            ),
        ),
        ToolDescriptor(
            name="complete_todo",
            description="Mark a todo item as completed.",
            handler=complete_todo,
            parameters=(param("id", "integer", description="Todo id"),),
        ),
    ]
