"""
Error taxonomy for stepwise.

Registry misuse (duplicate / unknown tools) is fatal to the call that triggered it.  Argument and
handler failures are recoverable inside the agent loop.  Decision failures end the current run.
"""

from typing import (
    TYPE_CHECKING,
    Any,
    List,
    Optional,
    Sequence,
)

if TYPE_CHECKING:  # pragma: no cover
    from stepwise.core.schema import RunResult


class AgentError(RuntimeError):
    """Base class for every error raised by the stepwise core."""

    @property
    def kind(self) -> str:
        """Short machine-readable name used in structured results."""
        return type(self).__name__


# ---------------------------------------------------------------------------
# Tool registry
# ---------------------------------------------------------------------------
class DuplicateToolError(AgentError):
    """Raised when a tool name is registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is already registered.")
        self.tool_name = name


class UnknownToolError(AgentError):
    """Raised when a tool name is not present in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' is not registered.")
        self.tool_name = name


class ValidationError(AgentError):
    """Raised when raw tool arguments do not conform to the tool's parameter schema."""

    def __init__(self, tool_name: str, problems: Sequence[str]):
        self.tool_name = tool_name
        self.problems: List[str] = list(problems)
        super().__init__(f"Invalid arguments for tool '{tool_name}': " + "; ".join(self.problems))


class ToolExecutionError(AgentError):
    """Raised when a tool handler fails.  The original exception is chained as ``__cause__``."""

    def __init__(self, tool_name: str, cause: BaseException):
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Tool '{tool_name}' raised an error: {detail}")
        self.tool_name = tool_name
        self.cause = cause


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------
class DecisionParseError(AgentError):
    """The collaborator returned something that is neither a final answer nor a tool call."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class PlannerError(AgentError):
    """The collaborator could not be reached or returned no usable content."""


class DecisionTimeoutError(AgentError):
    """A decision step exceeded its configured timeout."""


class IterationLimitExceeded(AgentError):
    """The loop requested more tool calls than ``max_iterations`` allows."""

    def __init__(self, max_iterations: int, iterations: int, last_answer: Optional[str] = None):
        super().__init__(
            f"Iteration limit of {max_iterations} exceeded after {iterations} tool-call steps."
        )
        self.max_iterations = max_iterations
        self.iterations = iterations
        self.last_answer = last_answer


class RunCancelledError(AgentError):
    """The run was cancelled cooperatively at a step boundary."""


class RunFailedError(AgentError):
    """Raised by ``RunResult.raise_for_status`` for a run that ended in FAILED."""

    def __init__(self, result: "RunResult"):
        super().__init__(
            f"Run for session '{result.session_key}' failed: {result.error_kind}: {result.error}"
        )
        self.result = result
        self.error_kind = result.error_kind


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
class PipelineStageError(AgentError):
    """A pipeline stage terminated in FAILED; later stages were not run."""

    def __init__(self, stage_index: int, stage_name: str, result: "RunResult"):
        super().__init__(
            f"Pipeline stage {stage_index} ('{stage_name}') failed: "
            f"{result.error_kind}: {result.error}"
        )
        self.stage_index = stage_index
        self.stage_name = stage_name
        self.result = result
