"""
Schema definitions for planner <-> agent <-> tool messages.

These data models serve as the contract between the model collaborator, the agent loop, the tool
registry and the conversation memory.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.
"""

from __future__ import annotations

from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
)
from pydantic import ValidationError as PydanticValidationError

from stepwise.errors import (
    DecisionParseError,
    PipelineStageError,
    RunFailedError,
)


# ---------------------------------------------------------------------------
# Conversation turns
# ---------------------------------------------------------------------------
class TurnRole(str, Enum):
    """Who produced a conversation turn."""

    USER = "user"
    AGENT = "agent"
    TOOL = "tool"  # tool observation


class ConversationTurn(BaseModel):
    """One immutable entry of a session's history."""

    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str
    sequence: int = Field(..., ge=0, description="Monotonic index within the session")
    name: Optional[str] = Field(None, description="Tool name for observation turns")
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tool invocation record
# ---------------------------------------------------------------------------
class ToolInvocation(BaseModel):
    """A single tool call made during one agent step (never persisted on its own)."""

    tool_name: str
    raw_arguments: Dict[str, Any] = Field(default_factory=dict)
    validated_arguments: Optional[Dict[str, Any]] = None
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        """True once the handler returned without raising."""
        return self.validated_arguments is not None and self.error is None


# ---------------------------------------------------------------------------
# Collaborator contract
# ---------------------------------------------------------------------------
class ToolSpec(BaseModel):
    """Catalog entry describing one tool to the collaborator."""

    name: str
    description: str
    parameters: List[Dict[str, Any]] = Field(default_factory=list)


class DecisionContext(BaseModel):
    """Everything the collaborator sees when making one decision."""

    tool_catalog: List[ToolSpec] = Field(default_factory=list)
    memory_window: List[ConversationTurn] = Field(default_factory=list)
    current_input: str


class FinalAnswer(BaseModel):
    """The collaborator is done and answers the user directly."""

    kind: Literal["final"] = "final"
    content: str


class ToolCallIntent(BaseModel):
    """The collaborator wants a tool to be invoked before it answers."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["tool_call", "toolCall"] = "tool_call"
    tool_name: str = Field(..., min_length=1, alias="toolName")
    arguments: Dict[str, Any] = Field(default_factory=dict)
    thought: Optional[str] = None


DecisionResult = Annotated[Union[FinalAnswer, ToolCallIntent], Field(discriminator="kind")]
_DECISION_ADAPTER: TypeAdapter[Union[FinalAnswer, ToolCallIntent]] = TypeAdapter(DecisionResult)


def coerce_decision(value: Any) -> Union[FinalAnswer, ToolCallIntent]:
    """
    Interpret whatever the collaborator returned as a decision.

    Accepts decision models as-is and tagged mappings (``{"kind": "final", ...}`` or
    ``{"kind": "tool_call", ...}``).  Anything else raises :class:`DecisionParseError`.
    """
    if isinstance(value, (FinalAnswer, ToolCallIntent)):
        return value
    if isinstance(value, Mapping):
        try:
            return _DECISION_ADAPTER.validate_python(dict(value))
        except PydanticValidationError as exc:
            raise DecisionParseError(f"Malformed decision: {exc}", raw=value) from exc
    raise DecisionParseError(f"Unsupported decision type: {type(value).__name__}", raw=value)


# ---------------------------------------------------------------------------
# Run results
# ---------------------------------------------------------------------------
class AgentStatus(str, Enum):
    """States of the agent loop; DONE and FAILED are terminal."""

    THINKING = "thinking"
    ACTING = "acting"
    OBSERVING = "observing"
    DONE = "done"
    FAILED = "failed"


class RunResult(BaseModel):
    """Structured outcome of one ``AgentLoop.run`` call."""

    session_key: str
    status: AgentStatus
    content: Optional[str] = Field(
        None, description="Final answer when DONE; best-effort last answer when FAILED, if any"
    )
    error_kind: Optional[str] = None
    error: Optional[str] = None
    iterations: int = 0
    decisions: int = 0

    @property
    def ok(self) -> bool:
        """True when the run ended in DONE."""
        return self.status is AgentStatus.DONE

    def raise_for_status(self) -> "RunResult":
        """Raise :class:`RunFailedError` if the run failed; return *self* on success."""
        if not self.ok:
            raise RunFailedError(self)
        return self


class StageTrace(BaseModel):
    """What one pipeline stage received and produced."""

    index: int
    name: str
    session_key: str
    input: str
    result: RunResult
    output: Optional[str] = Field(None, description="Answer after the stage transform")


class PipelineResult(BaseModel):
    """Outcome of an ``AgentPipeline.run`` call, with an ordered trace of every stage run."""

    status: AgentStatus
    answer: Optional[str] = None
    trace: List[StageTrace] = Field(default_factory=list)
    failed_stage: Optional[int] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True when every stage ended in DONE."""
        return self.status is AgentStatus.DONE

    @property
    def intermediate_answers(self) -> List[Optional[str]]:
        """Answer of every stage that ran, in order."""
        return [stage.result.content for stage in self.trace]

    def raise_for_status(self) -> "PipelineResult":
        """Raise :class:`PipelineStageError` for the failing stage; return *self* on success."""
        if not self.ok and self.failed_stage is not None:
            failed = self.trace[self.failed_stage]
            raise PipelineStageError(failed.index, failed.name, failed.result)
        return self
