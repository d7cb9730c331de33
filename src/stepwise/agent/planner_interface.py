"""
Planner interface for stepwise.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
memory, pipeline) stays model-agnostic and only sees :class:`BasePlanner.decide`, which turns a
:class:`DecisionContext` into either a final answer or a tool-call intent.

We support three back-ends out of the box:

1. **OpenAI** (or any OpenAI-compatible endpoint such as OpenRouter, via ``OPENAI_BASE_URL``).
2. **Anthropic** via the official SDK.
3. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models.

Additional providers can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.
"""

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    Union,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)
from pydantic import ValidationError as PydanticValidationError

from stepwise.config import settings
from stepwise.core.schema import (
    ConversationTurn,
    DecisionContext,
    FinalAnswer,
    ToolCallIntent,
    ToolSpec,
    TurnRole,
    coerce_decision,
)
from stepwise.errors import (
    DecisionParseError,
    PlannerError,
)

logger = logging.getLogger(__name__)

Decision = Union[FinalAnswer, ToolCallIntent]


class ModelCollaborator(Protocol):
    """Anything the agent loop can ask for its next step."""

    async def decide(self, context: DecisionContext) -> Any:
        """Return a :class:`FinalAnswer`, a :class:`ToolCallIntent` or an equivalent tagged dict."""


# ---------------------------------------------------------------------------
# Pydantic model for response validation
# ---------------------------------------------------------------------------
class PlannerResponse(BaseModel):
    """Validates the JSON object an LLM replies with."""

    tool: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    answer: Any = None
    thought: Optional[str] = None


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: Dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        cls.name = name
        return cls

    return wrapper


def list_planners() -> List[str]:
    """Names of all registered planners."""
    return sorted(_PLANNER_REGISTRY)


def load_planner(name: str | None = None, **kwargs: Any) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env/.env option
    3. default: ``"openai"``
    """

    target = name or getattr(settings, "PLANNER", "openai")
    cls = _PLANNER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered. Available: {list_planners()}")
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Prompt rendering / response parsing
# ---------------------------------------------------------------------------
_ROLE_LABELS = {
    TurnRole.USER: "User",
    TurnRole.AGENT: "Assistant",
}


def render_turn(turn: ConversationTurn) -> str:
    """Render one memory turn as a single prompt line."""
    if turn.role is TurnRole.TOOL:
        return f"Observation [{turn.name or 'tool'}]: {turn.content}"
    return f"{_ROLE_LABELS[turn.role]}: {turn.content}"


def render_context(context: DecisionContext) -> str:
    """Render memory window + current input as the user prompt."""
    if not context.memory_window:
        return context.current_input
    history = "\n".join(render_turn(turn) for turn in context.memory_window)
    return f"PREVIOUS CONVERSATION:\n{history}\n\nCURRENT QUERY:\n{context.current_input}"


def _sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    # Strip markdown code blocks if present
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Keep only the outermost JSON object, if there is one
    open_idx = content.find("{")
    if open_idx < 0:
        return content.strip()
    depth = 0
    in_string = False
    escaped = False
    for i in range(open_idx, len(content)):
        ch = content[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return content[open_idx : i + 1]
    return content[open_idx:]


def parse_decision(content: str) -> Decision:
    """
    Parse raw LLM output into a decision.

    Accepted shapes (one JSON object, optionally inside a markdown fence)::

        {"tool": "<name>", "args": {...}, "thought": "..."}
        {"answer": "<final reply>"}
        {"kind": "final", "content": "..."} / {"kind": "tool_call", "tool_name": ..., ...}

    Raises
    ------
    DecisionParseError
        For empty output, invalid JSON, or an object that is not exactly one of the above.
    """
    if not content or not content.strip():
        raise DecisionParseError("Empty response from collaborator", raw=content)

    cleaned = _sanitize_json_string(content)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise DecisionParseError(f"Response is not valid JSON: {exc}", raw=content) from exc
    if not isinstance(data, dict):
        raise DecisionParseError("Response must be a JSON object", raw=content)

    if "kind" in data:
        return coerce_decision(data)

    try:
        parsed = PlannerResponse.model_validate(data)
    except PydanticValidationError as exc:
        raise DecisionParseError(f"Malformed response: {exc}", raw=content) from exc

    has_tool = bool(parsed.tool)
    has_answer = parsed.answer is not None
    if has_tool == has_answer:
        raise DecisionParseError(
            "Response must contain exactly one of 'tool' or 'answer'", raw=content
        )
    if has_tool:
        return ToolCallIntent(tool_name=parsed.tool, arguments=parsed.args, thought=parsed.thought)
    return FinalAnswer(content=str(parsed.answer))


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Model collaborator: converts a decision context into a final answer or a tool call."""

    name: ClassVar[str] = "base"

    # Common system prompt for all planners
    SYSTEM_PROMPT: ClassVar[
        str
    ] = """\
You are a helpful assistant that can THINK and ACT.
When you need to use a tool, respond with JSON like:
{"tool": "<name>", "args": { ... }, "thought": "<why>"}
If no tool is needed, or you have enough information, respond with:
{"answer": "<final reply to user>"}
Only one object, no extra text.  Tool results appear as "Observation [<tool>]" lines.
"""

    def _build_prompt(self, tool_catalog: Sequence[ToolSpec] = ()) -> str:
        """Build the system prompt with the available tools and their parameters."""
        prompt = self.SYSTEM_PROMPT
        if tool_catalog:
            tools_info = []
            for spec in tool_catalog:
                param_desc = ", ".join(
                    f"{p['name']}: {p['type']}{'' if p['required'] else ' (optional)'}"
                    for p in spec.parameters
                )
                tools_info.append(f"- {spec.name}({param_desc}): {spec.description}")
            prompt += "\n\nAvailable tools:\n" + "\n".join(tools_info)
        else:
            prompt += "\n\nNo tools are available; always answer directly."
        return prompt

    async def decide(self, context: DecisionContext) -> Decision:
        """Ask the model for the next step."""
        system_prompt = self._build_prompt(context.tool_catalog)
        user_prompt = render_context(context)
        try:
            content = await self._complete(system_prompt, user_prompt)
        except PlannerError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("%s planner error: %s", self.name, exc)
            raise PlannerError(f"Error calling {self.name} planner: {exc}") from exc
        logger.debug("%s planner response: %s", self.name, content)
        return parse_decision(content)

    @abstractmethod
    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        """Send the prompts to the model and return its raw text reply."""


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
@register_planner("tgi")
class TGIPlanner(BasePlanner):
    """TGI-based planner with an httpx client."""

    def __init__(self, endpoint: str | None = None, timeout: float = 30.0):
        self.endpoint = endpoint or settings.TGI_ENDPOINT
        self.timeout = timeout

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        payload = {
            "inputs": f"{system_prompt}\n\nUser: {user_prompt}",
            "parameters": {
                "max_new_tokens": 512,
                "temperature": settings.TEMPERATURE,
                "stop": ["User:", "</s>"],
            },
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.endpoint, json=payload)
            resp.raise_for_status()
            return str(resp.json()["generated_text"])


@register_planner("openai")
class OpenAIPlanner(BasePlanner):
    """OpenAI (or OpenAI-compatible) chat-completions planner."""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.model = model or settings.OPENAI_MODEL
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = base_url or settings.OPENAI_BASE_URL

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        resp = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=settings.TEMPERATURE,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content
        if not content:
            raise PlannerError("Empty response from OpenAI")
        return content


@register_planner("anthropic")
class AnthropicPlanner(BasePlanner):
    """Anthropic Claude-based planner."""

    def __init__(self, model: str | None = None, api_key: str | None = None):
        self.model = model or settings.ANTHROPIC_MODEL
        self.api_key = api_key or settings.ANTHROPIC_API_KEY

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(api_key=self.api_key)
        response = await client.messages.create(
            model=self.model,
            max_tokens=2048,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=settings.TEMPERATURE,
        )
        # Only text blocks carry the JSON decision
        texts = [block.text for block in response.content if block.type == "text"]
        if not texts:
            raise PlannerError("Anthropic response contained no text block")
        return "".join(texts)
