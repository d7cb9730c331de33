"""
Pydantic models for stepwise API requests and responses.
This module defines the request and response schemas used by the stepwise API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from stepwise.core.schema import (
    ConversationTurn,
    PipelineResult,
    RunResult,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User message for the assistant")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")


class MessageResponse(BaseModel):
    """
    API response returned to the caller.

    ``status`` is ``"done"`` with a ``reply``, or ``"failed"`` with ``error_kind`` and ``error``.
    A failed run may still carry a best-effort ``reply``.
    """

    status: str
    reply: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    iterations: int = 0
    session_id: str

    @classmethod
    def from_result(cls, result: RunResult) -> "MessageResponse":
        """Build the response for a finished run."""
        return cls(
            status=result.status.value,
            reply=result.content,
            error_kind=result.error_kind,
            error=result.error,
            iterations=result.iterations,
            session_id=result.session_key,
        )


class TurnView(BaseModel):
    """One turn of a session's history."""

    sequence: int
    role: str
    content: str
    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_turn(cls, turn: ConversationTurn) -> "TurnView":
        """Convert a memory turn."""
        return cls(
            sequence=turn.sequence,
            role=turn.role.value,
            content=turn.content,
            name=turn.name,
            metadata=turn.metadata,
        )


class PipelineRequest(BaseModel):
    """Input for the content pipeline."""

    message: str = Field(..., min_length=1, description="Topic or instruction for the first stage")


class StageView(BaseModel):
    """One entry of the pipeline trace."""

    index: int
    name: str
    input: str
    status: str
    answer: Optional[str] = None
    output: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None


class PipelineResponse(BaseModel):
    """Outcome of a pipeline run."""

    status: str
    answer: Optional[str] = None
    failed_stage: Optional[int] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    stages: List[StageView] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: PipelineResult) -> "PipelineResponse":
        """Build the response for a finished pipeline."""
        return cls(
            status=result.status.value,
            answer=result.answer,
            failed_stage=result.failed_stage,
            error_kind=result.error_kind,
            error=result.error,
            stages=[
                StageView(
                    index=entry.index,
                    name=entry.name,
                    input=entry.input,
                    status=entry.result.status.value,
                    answer=entry.result.content,
                    output=entry.output,
                    error_kind=entry.result.error_kind,
                    error=entry.result.error,
                )
                for entry in result.trace
            ],
        )
