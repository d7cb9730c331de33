"""Tests for the in-process conversation memory."""

import pytest

from stepwise.core.schema import (
    ConversationTurn,
    TurnRole,
)
from stepwise.memory.memory_store import ConversationMemory


def _turn(seq: int, content: str) -> ConversationTurn:
    return ConversationTurn(role=TurnRole.USER, content=content, sequence=seq)


def test_read_returns_turns_in_append_order(memory: ConversationMemory) -> None:
    """Nothing is dropped, reordered or deduplicated."""
    turns = [_turn(i, "same" if i % 2 else f"msg {i}") for i in range(25)]
    for turn in turns:
        memory.append("s", turn)

    assert memory.read("s") == turns


def test_window_returns_most_recent(memory: ConversationMemory) -> None:
    """A window returns the last N turns, oldest first."""
    for i in range(5):
        memory.record("s", TurnRole.USER, f"m{i}")

    assert [t.content for t in memory.read("s", 2)] == ["m3", "m4"]
    assert [t.content for t in memory.read("s", 10)] == [f"m{i}" for i in range(5)]
    assert memory.read("s", 0) == []


def test_negative_window_rejected(memory: ConversationMemory) -> None:
    """A negative window size is a caller error."""
    with pytest.raises(ValueError):
        memory.read("s", -1)


def test_unknown_key_is_empty(memory: ConversationMemory) -> None:
    """Reading a key that was never written is not an error."""
    assert memory.read("never") == []
    assert "never" not in memory


def test_keys_are_isolated(memory: ConversationMemory) -> None:
    """Turns appended to one key are invisible to another."""
    memory.record("a", TurnRole.USER, "for a")
    memory.record("b", TurnRole.USER, "for b")

    assert [t.content for t in memory.read("a")] == ["for a"]
    assert [t.content for t in memory.read("b")] == ["for b"]
    assert sorted(memory.keys()) == ["a", "b"]


def test_clear_drops_only_that_key(memory: ConversationMemory) -> None:
    """clear forgets one session."""
    memory.record("a", TurnRole.USER, "x")
    memory.record("b", TurnRole.USER, "y")

    memory.clear("a")
    memory.clear("missing")

    assert memory.read("a") == []
    assert len(memory.read("b")) == 1
    assert len(memory) == 1


def test_record_assigns_increasing_sequence(memory: ConversationMemory) -> None:
    """record numbers turns per key, starting at zero."""
    memory.record("a", TurnRole.USER, "q")
    memory.record("a", TurnRole.TOOL, "obs", name="calculator", metadata={"ok": True})
    memory.record("b", TurnRole.USER, "other")

    a_turns = memory.read("a")
    assert [t.sequence for t in a_turns] == [0, 1]
    assert a_turns[1].name == "calculator"
    assert a_turns[1].metadata == {"ok": True}
    assert memory.read("b")[0].sequence == 0
