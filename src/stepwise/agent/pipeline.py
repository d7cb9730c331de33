"""Sequential multi-agent composition."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    Union,
)

from stepwise.agent.agent_loop import AgentLoop
from stepwise.core.schema import (
    AgentStatus,
    PipelineResult,
    RunResult,
    StageTrace,
)

logger = logging.getLogger(__name__)

Transform = Callable[[str], Union[str, Awaitable[str]]]
"""Maps a stage's answer to the text handed to the next stage (sync or async)."""

TRANSFORM_ERROR = "TransformError"


@dataclass
class PipelineStage:
    """
    One agent in a pipeline.

    Parameters
    ----------
    agent:
        The stage's own loop, with its own tool registry.
    transform:
        Optional mapping applied to this stage's answer before it is passed on.
    name:
        Stage label; defaults to the agent's name.
    session_key:
        Memory key for this stage; defaults to ``"{pipeline}:{index}:{name}"``.
    """

    agent: AgentLoop
    transform: Optional[Transform] = None
    name: Optional[str] = None
    session_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.name is None:
            self.name = self.agent.name

    async def apply_transform(self, answer: str) -> str:
        """Run the transform on *answer* (identity if none)."""
        if self.transform is None:
            return answer
        output = self.transform(answer)
        if inspect.isawaitable(output):
            output = await output
        return str(output)


class AgentPipeline:
    """
    Runs stages strictly in order, feeding each stage's (transformed) answer to the next.

    The first stage that ends in FAILED halts the pipeline; later stages are never started.
    """

    def __init__(self, stages: Sequence[PipelineStage], name: str = "pipeline") -> None:
        if not stages:
            raise ValueError("A pipeline needs at least one stage")
        self.stages: List[PipelineStage] = list(stages)
        self.name = name

    def session_key_for(self, index: int) -> str:
        """Memory key used by stage *index*."""
        stage = self.stages[index]
        return stage.session_key or f"{self.name}:{index}:{stage.name}"

    async def run(
        self,
        initial_input: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Run every stage on *initial_input*; return the last output plus the stage trace."""
        trace: List[StageTrace] = []
        text = initial_input

        for index, stage in enumerate(self.stages):
            key = self.session_key_for(index)
            logger.info("[%s] stage %d (%s) starting", self.name, index, stage.name)
            result = await stage.agent.run(key, text, cancel_event=cancel_event)
            entry = StageTrace(
                index=index, name=stage.name, session_key=key, input=text, result=result
            )
            trace.append(entry)

            if not result.ok:
                return self._halt(trace, index, result)

            try:
                entry.output = await stage.apply_transform(result.content or "")
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("[%s] transform of stage %d failed", self.name, index)
                entry.result = result.model_copy(
                    update={
                        "status": AgentStatus.FAILED,
                        "error_kind": TRANSFORM_ERROR,
                        "error": f"Transform of stage '{stage.name}' raised: {exc}",
                    }
                )
                return self._halt(trace, index, entry.result)
            text = entry.output

        logger.info("[%s] completed %d stage(s)", self.name, len(trace))
        return PipelineResult(status=AgentStatus.DONE, answer=text, trace=trace)

    def _halt(self, trace: List[StageTrace], index: int, result: RunResult) -> PipelineResult:
        logger.warning(
            "[%s] halted at stage %d (%s): %s",
            self.name,
            index,
            trace[index].name,
            result.error_kind,
        )
        return PipelineResult(
            status=AgentStatus.FAILED,
            trace=trace,
            failed_stage=index,
            error_kind=result.error_kind,
            error=result.error,
        )
