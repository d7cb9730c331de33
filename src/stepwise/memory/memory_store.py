"""In-process conversation memory keyed by session."""

import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

from stepwise.core.schema import (
    ConversationTurn,
    TurnRole,
)

logger = logging.getLogger(__name__)


class ConversationMemory:
    """
    Ordered store of conversation turns, one independent sequence per session key.

    Turns are kept in insertion order and returned in that order; nothing is reordered,
    deduplicated or persisted beyond the lifetime of the process.  Keys are isolated namespaces.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, List[ConversationTurn]] = {}

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def append(self, key: str, turn: ConversationTurn) -> ConversationTurn:
        """Add *turn* to the end of *key*'s history (the history is created on first use)."""
        self._sessions.setdefault(key, []).append(turn)
        return turn

    def record(
        self,
        key: str,
        role: TurnRole,
        content: str,
        *,
        name: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> ConversationTurn:
        """Build a turn with the next sequence number for *key* and append it."""
        turns = self._sessions.get(key, [])
        sequence = turns[-1].sequence + 1 if turns else 0
        turn = ConversationTurn(
            role=role,
            content=content,
            sequence=sequence,
            name=name,
            metadata=dict(metadata or {}),
        )
        return self.append(key, turn)

    def read(self, key: str, window_size: Optional[int] = None) -> List[ConversationTurn]:
        """
        Return the most recent *window_size* turns for *key* in chronological order.

        The full history is returned when *window_size* is None; an unknown key yields ``[]``.
        """
        if window_size is not None and window_size < 0:
            raise ValueError("window_size must be >= 0")
        turns = self._sessions.get(key, [])
        if window_size is None:
            return list(turns)
        if window_size == 0:
            return []
        return list(turns[-window_size:])

    def clear(self, key: str) -> None:
        """Drop all turns for *key*."""
        dropped = self._sessions.pop(key, None)
        logger.debug("Cleared session '%s' (%d turns)", key, len(dropped or []))

    def keys(self) -> List[str]:
        """Session keys that currently hold at least one turn."""
        return [key for key, turns in self._sessions.items() if turns]

    def __contains__(self, key: object) -> bool:
        return bool(self._sessions.get(key))  # type: ignore[call-overload]

    def __len__(self) -> int:
        return len(self.keys())
