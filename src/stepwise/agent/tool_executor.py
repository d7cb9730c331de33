"""Runs one tool-call intent against a registry and turns the outcome into an observation."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
)

from stepwise.core.schema import (
    ToolCallIntent,
    ToolInvocation,
)
from stepwise.errors import (
    AgentError,
    ToolExecutionError,
    UnknownToolError,
    ValidationError,
)
from stepwise.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

# Failures the agent loop folds back into memory instead of aborting the run
RECOVERABLE_ERRORS = (UnknownToolError, ValidationError, ToolExecutionError)


@dataclass
class Observation:
    """What the loop records after one ACTING step."""

    invocation: ToolInvocation
    content: str

    @property
    def succeeded(self) -> bool:
        """True if the handler ran and returned a result."""
        return self.invocation.succeeded

    def metadata(self) -> Dict[str, Any]:
        """Extra fields stored on the tool-observation turn."""
        meta: Dict[str, Any] = {
            "arguments": self.invocation.raw_arguments,
            "ok": self.succeeded,
        }
        if self.invocation.error_kind:
            meta["error_kind"] = self.invocation.error_kind
        return meta


def format_result(result: Any) -> str:
    """Render a handler result as observation text."""
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list)):
        return json.dumps(result, default=str)
    return str(result)


async def execute_tool(
    registry: ToolRegistry,
    intent: ToolCallIntent,
    timeout: float | None = None,
) -> Observation:
    """
    Validate and run the tool named by *intent*.

    Parameters
    ----------
    registry:
        Registry the tool is looked up in.
    intent:
        The collaborator's tool-call intent.
    timeout:
        Seconds the handler may run.  ``None`` means no limit.

    Returns
    -------
    Observation
        Successful results and recoverable failures (unknown tool, invalid arguments, handler
        fault or timeout) are both returned as observations; the failure text starts with
        ``"Error:"`` and the invocation carries the error kind.
    """

    invocation = ToolInvocation(tool_name=intent.tool_name, raw_arguments=dict(intent.arguments))
    try:
        invocation = registry.prepare(intent.tool_name, intent.arguments)
        try:
            result = await asyncio.wait_for(registry.dispatch(invocation), timeout=timeout)
        except asyncio.TimeoutError as exc:
            error = ToolExecutionError(
                intent.tool_name, TimeoutError(f"timed out after {timeout} seconds")
            )
            raise error from exc
    except RECOVERABLE_ERRORS as exc:
        return _failed(invocation, exc)

    logger.info("Tool '%s' returned: %s", intent.tool_name, result)
    return Observation(invocation=invocation, content=format_result(result))


def _failed(invocation: ToolInvocation, exc: AgentError) -> Observation:
    invocation.error = str(exc)
    invocation.error_kind = exc.kind
    logger.warning("Tool call '%s' failed (%s): %s", invocation.tool_name, exc.kind, exc)
    return Observation(invocation=invocation, content=f"Error: {exc}")
