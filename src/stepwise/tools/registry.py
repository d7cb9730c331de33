"""
Tool registry for stepwise.

A :class:`ToolRegistry` holds named :class:`ToolDescriptor` objects, validates raw arguments
against each tool's parameter list and dispatches to the tool's handler.  Handlers may be plain
functions or coroutine functions; both receive a single ``dict`` of validated arguments.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from stepwise.core.schema import (
    ToolInvocation,
    ToolSpec,
)
from stepwise.errors import (
    DuplicateToolError,
    ToolExecutionError,
    UnknownToolError,
)
from stepwise.tools.validation import (
    matches_kind,
    validate_arguments,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Any]
"""Handler signature: validated arguments in, result (or awaitable result) out."""


class ParamKind(str, Enum):
    """Primitive kinds a tool parameter may declare."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"


class ParameterSpec(BaseModel):
    """Field descriptor for one tool parameter."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    kind: ParamKind
    required: bool = True
    default: Any = None
    description: str = ""
    choices: Optional[Tuple[Any, ...]] = None

    @model_validator(mode="after")
    def _check_default(self) -> "ParameterSpec":
        if self.default is None:
            return self
        if self.required:
            raise ValueError(f"required parameter '{self.name}' cannot declare a default")
        if not matches_kind(self.default, self.kind):
            raise ValueError(
                f"default of '{self.name}' must be of kind {self.kind.value}, "
                f"got {type(self.default).__name__}"
            )
        if self.choices is not None and self.default not in self.choices:
            raise ValueError(f"default of '{self.name}' must be one of {list(self.choices)}")
        return self

    def describe(self) -> Dict[str, Any]:
        """Return a JSON-friendly description of the field."""
        info: Dict[str, Any] = {
            "name": self.name,
            "type": self.kind.value,
            "required": self.required,
        }
        if not self.required and self.default is not None:
            info["default"] = self.default
        if self.choices is not None:
            info["choices"] = list(self.choices)
        if self.description:
            info["description"] = self.description
        return info


def param(
    name: str,
    kind: ParamKind | str,
    *,
    required: bool = True,
    default: Any = None,
    description: str = "",
    choices: Optional[Sequence[Any]] = None,
) -> ParameterSpec:
    """Shorthand for building a :class:`ParameterSpec`."""
    return ParameterSpec(
        name=name,
        kind=ParamKind(kind),
        required=required,
        default=default,
        description=description,
        choices=tuple(choices) if choices is not None else None,
    )


class ToolDescriptor(BaseModel):
    """A named, schema-described capability.  Immutable once built."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str
    handler: ToolHandler
    parameters: Tuple[ParameterSpec, ...] = ()
    allow_extra: bool = False

    @model_validator(mode="after")
    def _unique_parameter_names(self) -> "ToolDescriptor":
        names = [spec.name for spec in self.parameters]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate parameter name(s) for tool '{self.name}': {duplicates}")
        return self

    def spec(self) -> ToolSpec:
        """Return the catalog entry shown to the collaborator."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=[p.describe() for p in self.parameters],
        )


class ToolRegistry:
    """In-memory registry responsible for resolving, validating and invoking tools."""

    def __init__(self, tools: Iterable[ToolDescriptor] = ()) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}
        self.register_many(tools)

    # ------------------------------------------------------------------ #
    # Registration / lookup
    # ------------------------------------------------------------------ #
    def register(self, descriptor: ToolDescriptor) -> ToolDescriptor:
        """Store *descriptor*; fail with :class:`DuplicateToolError` if the name is taken."""
        if descriptor.name in self._tools:
            raise DuplicateToolError(descriptor.name)
        logger.debug("Registering tool '%s'", descriptor.name)
        self._tools[descriptor.name] = descriptor
        return descriptor

    def register_many(self, descriptors: Iterable[ToolDescriptor]) -> None:
        """Register every descriptor in order."""
        for descriptor in descriptors:
            self.register(descriptor)

    def tool(
        self,
        name: str,
        description: str,
        parameters: Sequence[ParameterSpec] = (),
        *,
        allow_extra: bool = False,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """
        Register the decorated function as a tool handler.

        Used like this::

            @registry.tool("add", "Add two numbers", [param("a", "number"), param("b", "number")])
            def add(args):
                return args["a"] + args["b"]
        """

        def wrapper(fn: ToolHandler) -> ToolHandler:
            self.register(
                ToolDescriptor(
                    name=name,
                    description=description,
                    handler=fn,
                    parameters=tuple(parameters),
                    allow_extra=allow_extra,
                )
            )
            return fn

        return wrapper

    def lookup(self, name: str) -> ToolDescriptor:
        """Return the descriptor for *name* or fail with :class:`UnknownToolError`."""
        try:
            return self._tools[name]
        except KeyError as exc:
            raise UnknownToolError(name) from exc

    def names(self) -> List[str]:
        """Registered tool names in registration order."""
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(list(self._tools.values()))

    def catalog(self) -> List[ToolSpec]:
        """Name, description and parameter list of every tool, for the collaborator."""
        return [descriptor.spec() for descriptor in self._tools.values()]

    def describe(self) -> str:
        """Return a prompt-friendly description of registered tools."""
        lines = []
        for descriptor in self._tools.values():
            params = ", ".join(
                f"{p.name}: {p.kind.value}{'' if p.required else '?'}"
                for p in descriptor.parameters
            )
            lines.append(f"- {descriptor.name}({params}): {descriptor.description}")
        return "\n".join(lines)

    # ------------------------------------------------------------------ #
    # Invocation
    # ------------------------------------------------------------------ #
    def prepare(self, name: str, raw_arguments: Optional[Dict[str, Any]] = None) -> ToolInvocation:
        """
        Look up *name* and validate *raw_arguments* without calling the handler.

        Raises
        ------
        UnknownToolError
            If *name* is not registered.
        ValidationError
            If the arguments do not conform to the tool's parameters.
        """
        descriptor = self.lookup(name)
        validated = validate_arguments(descriptor, raw_arguments)
        return ToolInvocation(
            tool_name=name,
            raw_arguments=dict(raw_arguments or {}),
            validated_arguments=validated,
        )

    async def dispatch(self, invocation: ToolInvocation) -> Any:
        """
        Call the handler of a prepared invocation and record its outcome on *invocation*.

        Raises
        ------
        ToolExecutionError
            If the handler raises.  The original exception is chained.
        """
        if invocation.validated_arguments is None:
            raise ValueError(f"Invocation of '{invocation.tool_name}' was not prepared.")
        descriptor = self.lookup(invocation.tool_name)
        logger.debug(
            "Executing tool '%s' with args=%s", descriptor.name, invocation.validated_arguments
        )
        try:
            result = descriptor.handler(dict(invocation.validated_arguments))
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unhandled error in tool '%s'", descriptor.name)
            error = ToolExecutionError(descriptor.name, exc)
            invocation.error = str(error)
            invocation.error_kind = error.kind
            raise error from exc
        invocation.result = result
        return result

    async def invoke(self, name: str, raw_arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Validate *raw_arguments* for tool *name* and run its handler; return the result."""
        return await self.dispatch(self.prepare(name, raw_arguments))
