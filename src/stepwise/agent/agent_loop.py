"""
Main orchestration loop for stepwise.

One :meth:`AgentLoop.run` call drives a single user input through the state machine::

    THINKING -> {ACTING, DONE, FAILED}
    ACTING   -> {OBSERVING, FAILED}
    OBSERVING -> {THINKING, FAILED}

Every step is awaited before the next begins.  Tool failures are folded back into memory as
observations so the collaborator can recover; collaborator failures, timeouts, cancellation and
the iteration limit end the run in FAILED.  ``run`` always returns a :class:`RunResult`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Dict,
    FrozenSet,
    List,
    Optional,
)

from stepwise.agent.planner_interface import ModelCollaborator
from stepwise.agent.tool_executor import execute_tool
from stepwise.common import truncate
from stepwise.core.schema import (
    AgentStatus,
    DecisionContext,
    FinalAnswer,
    RunResult,
    ToolCallIntent,
    TurnRole,
    coerce_decision,
)
from stepwise.errors import (
    AgentError,
    DecisionParseError,
    DecisionTimeoutError,
    IterationLimitExceeded,
    PlannerError,
    RunCancelledError,
)
from stepwise.memory.memory_store import ConversationMemory
from stepwise.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

# Errors that end a run in FAILED; anything else propagates to the caller
TERMINAL_ERRORS = (
    DecisionParseError,
    PlannerError,
    DecisionTimeoutError,
    IterationLimitExceeded,
    RunCancelledError,
)

ALLOWED_TRANSITIONS: Dict[AgentStatus, FrozenSet[AgentStatus]] = {
    AgentStatus.THINKING: frozenset({AgentStatus.ACTING, AgentStatus.DONE, AgentStatus.FAILED}),
    AgentStatus.ACTING: frozenset({AgentStatus.OBSERVING, AgentStatus.FAILED}),
    AgentStatus.OBSERVING: frozenset({AgentStatus.THINKING, AgentStatus.FAILED}),
    AgentStatus.DONE: frozenset(),
    AgentStatus.FAILED: frozenset(),
}


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------
@dataclass
class AgentState:
    """Mutable bookkeeping for one run."""

    session_key: str
    status: AgentStatus = AgentStatus.THINKING
    iterations: int = 0  # tool-call steps taken
    decisions: int = 0  # collaborator calls made
    last_answer: Optional[str] = None
    history: List[AgentStatus] = field(default_factory=lambda: [AgentStatus.THINKING])

    @property
    def terminal(self) -> bool:
        """True once the run is DONE or FAILED."""
        return self.status in (AgentStatus.DONE, AgentStatus.FAILED)

    def advance(self, target: AgentStatus) -> None:
        """Move to *target*, refusing transitions the state machine does not allow."""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise RuntimeError(
                f"Illegal transition {self.status.value} -> {target.value} "
                f"for session '{self.session_key}'"
            )
        logger.debug("[%s] %s -> %s", self.session_key, self.status.value, target.value)
        self.status = target
        self.history.append(target)


@dataclass
class _SessionLock:
    """Per-session lock plus the number of runs holding or awaiting it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
class AgentLoop:
    """
    Drives think -> act -> observe cycles for one agent.

    Parameters
    ----------
    planner:
        The model collaborator asked for each decision.
    registry:
        Tools this agent may call.  Their catalog is shown to the collaborator on every decision.
    memory:
        Conversation memory; each run reads and appends to its session key only.
    max_iterations:
        Maximum number of tool-call steps per run.  Required; ``0`` means every tool-call intent
        fails the run.
    memory_window:
        Number of most recent turns shown to the collaborator (``None`` = whole session).
    decision_timeout, tool_timeout:
        Per-step limits in seconds (``None`` = wait indefinitely).
    name:
        Label used in logs and as the default pipeline stage name.
    """

    def __init__(
        self,
        planner: ModelCollaborator,
        registry: ToolRegistry,
        memory: ConversationMemory,
        *,
        max_iterations: int,
        memory_window: int | None = None,
        decision_timeout: float | None = None,
        tool_timeout: float | None = None,
        name: str = "agent",
    ) -> None:
        if max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")
        if memory_window is not None and memory_window < 0:
            raise ValueError("memory_window must be >= 0")
        self.planner = planner
        self.registry = registry
        self.memory = memory
        self.max_iterations = max_iterations
        self.memory_window = memory_window
        self.decision_timeout = decision_timeout
        self.tool_timeout = tool_timeout
        self.name = name
        self._session_locks: Dict[str, _SessionLock] = {}

    @property
    def active_sessions(self) -> List[str]:
        """Session keys with a run in progress or waiting."""
        return list(self._session_locks)

    async def run(
        self,
        session_key: str,
        user_input: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """
        Answer *user_input* within session *session_key*.

        Runs on the same session key are serialized; runs on different keys may interleave.
        Setting *cancel_event* stops the run at the next THINKING/ACTING boundary.
        """
        entry = self._session_locks.setdefault(session_key, _SessionLock())
        entry.users += 1
        try:
            async with entry.lock:
                return await self._run(session_key, user_input, cancel_event)
        finally:
            entry.users -= 1
            # Drop the lock once no run holds or awaits it
            if not entry.users:
                self._session_locks.pop(session_key, None)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _run(
        self,
        session_key: str,
        user_input: str,
        cancel_event: asyncio.Event | None,
    ) -> RunResult:
        state = AgentState(session_key=session_key)
        self.memory.record(session_key, TurnRole.USER, user_input)
        logger.info("[%s] %s received: %s", session_key, self.name, truncate(user_input))

        try:
            while True:
                # THINKING
                self._check_cancelled(cancel_event)
                decision = await self._decide(state, user_input)

                if isinstance(decision, FinalAnswer):
                    self.memory.record(session_key, TurnRole.AGENT, decision.content)
                    state.advance(AgentStatus.DONE)
                    logger.info(
                        "[%s] %s answered after %d tool call(s)",
                        session_key,
                        self.name,
                        state.iterations,
                    )
                    return self._result(state, content=decision.content)

                # ACTING
                state.advance(AgentStatus.ACTING)
                if state.iterations >= self.max_iterations:
                    raise IterationLimitExceeded(
                        self.max_iterations, state.iterations, last_answer=state.last_answer
                    )
                state.iterations += 1
                self._check_cancelled(cancel_event)
                await self._act(state, decision)
                state.advance(AgentStatus.THINKING)
        except TERMINAL_ERRORS as exc:
            return self._fail(state, exc)

    async def _decide(self, state: AgentState, user_input: str) -> FinalAnswer | ToolCallIntent:
        context = DecisionContext(
            tool_catalog=self.registry.catalog(),
            memory_window=self.memory.read(state.session_key, self.memory_window),
            current_input=user_input,
        )
        state.decisions += 1
        try:
            raw = await asyncio.wait_for(
                self.planner.decide(context), timeout=self.decision_timeout
            )
        except asyncio.TimeoutError as exc:
            raise DecisionTimeoutError(
                f"Decision step exceeded {self.decision_timeout} seconds"
            ) from exc
        except TERMINAL_ERRORS:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("[%s] collaborator raised: %r", state.session_key, exc)
            raise PlannerError(f"Collaborator failed: {type(exc).__name__}: {exc}") from exc
        return coerce_decision(raw)

    async def _act(self, state: AgentState, intent: ToolCallIntent) -> None:
        logger.info(
            "[%s] %s calling tool '%s' with %s",
            state.session_key,
            self.name,
            intent.tool_name,
            intent.arguments,
        )
        observation = await execute_tool(self.registry, intent, timeout=self.tool_timeout)

        # OBSERVING
        state.advance(AgentStatus.OBSERVING)
        self.memory.record(
            state.session_key,
            TurnRole.TOOL,
            observation.content,
            name=intent.tool_name,
            metadata=observation.metadata(),
        )
        if observation.succeeded:
            state.last_answer = observation.content

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError("Run cancelled by caller")

    @staticmethod
    def _result(state: AgentState, **kwargs) -> RunResult:
        return RunResult(
            session_key=state.session_key,
            status=state.status,
            iterations=state.iterations,
            decisions=state.decisions,
            **kwargs,
        )

    def _fail(self, state: AgentState, exc: AgentError) -> RunResult:
        state.advance(AgentStatus.FAILED)
        logger.warning("[%s] %s failed (%s): %s", state.session_key, self.name, exc.kind, exc)
        content = exc.last_answer if isinstance(exc, IterationLimitExceeded) else None
        return self._result(state, content=content, error_kind=exc.kind, error=str(exc))
