"""Note-taking tools backed by an in-process notebook."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import (
    dataclass,
    field,
)
from datetime import (
    datetime,
    timezone,
)
from typing import (
    Any,
    Dict,
    List,
)

from stepwise.tools.registry import (
    ToolDescriptor,
    param,
)

logger = logging.getLogger(__name__)


@dataclass
class Note:
    """A saved note."""

    note_id: int
    content: str
    saved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NoteStore:
    """Notebook shared by the note tools."""

    def __init__(self) -> None:
        self._notes: List[Note] = []
        self._lock = asyncio.Lock()

    def notes(self) -> List[Note]:
        """All notes in the order they were saved."""
        return list(self._notes)

    async def save(self, content: str) -> Note:
        """Append *content* as a new note."""
        async with self._lock:
            note = Note(note_id=len(self._notes) + 1, content=content)
            self._notes.append(note)
        logger.debug("Saved note %d", note.note_id)
        return note


def build_note_tools(store: NoteStore) -> List[ToolDescriptor]:
    """Build ``save_note`` and ``list_notes`` for *store*."""

    async def save_note(args: Dict[str, Any]) -> str:
        note = await store.save(args["content"])
        return f"Note saved: \"{note.content}\""

    def list_notes(args: Dict[str, Any]) -> str:
        notes = store.notes()
        if not notes:
            return "No notes saved."
        return "\n".join(f"{note.note_id}. {note.content}" for note in notes)

    return [
        ToolDescriptor(
            name="save_note",
            description="Save a note to the notebook.",
            handler=save_note,
            parameters=(param("content", "string", description="Text of the note"),),
        ),
        ToolDescriptor(
            name="list_notes",
            description="List every saved note.",
            handler=list_notes,
        ),
    ]
