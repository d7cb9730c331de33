"""
Argument validation for tool invocations.

Every tool declares its parameters as an explicit list of :class:`ParameterSpec` field descriptors
(name, kind, required flag, default).  This module interprets that list uniformly for all tools:
required fields must be present, present fields must have the declared primitive kind, optional
fields that are absent receive their default, and unexpected fields are rejected unless the tool
allows extras.  Values are never coerced from one kind to another.
"""

from __future__ import annotations

import copy
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Mapping,
)

from stepwise.errors import ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from stepwise.tools.registry import (
        ParameterSpec,
        ParamKind,
        ToolDescriptor,
    )

logger = logging.getLogger(__name__)


def matches_kind(value: Any, kind: "ParamKind") -> bool:
    """Return True if *value* is an instance of the primitive *kind*."""
    name = kind.value
    if name == "any":
        return True
    if name == "string":
        return isinstance(value, str)
    if name == "boolean":
        return isinstance(value, bool)
    # bool is a subclass of int; never accept it as a number
    if name == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if name == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if name == "array":
        return isinstance(value, (list, tuple))
    if name == "object":
        return isinstance(value, Mapping)
    return False


def _check_field(spec: "ParameterSpec", value: Any, problems: List[str]) -> None:
    if not matches_kind(value, spec.kind):
        problems.append(
            f"'{spec.name}' must be of kind {spec.kind.value}, got {type(value).__name__}"
        )
        return
    if spec.choices is not None and value not in spec.choices:
        allowed = ", ".join(repr(choice) for choice in spec.choices)
        problems.append(f"'{spec.name}' must be one of [{allowed}], got {value!r}")


def validate_arguments(descriptor: "ToolDescriptor", raw_arguments: Any) -> Dict[str, Any]:
    """
    Validate *raw_arguments* against the parameter list of *descriptor*.

    Parameters
    ----------
    descriptor:
        The tool whose schema is applied.
    raw_arguments:
        The unvalidated arguments proposed by the collaborator.  ``None`` is treated as ``{}``.

    Returns
    -------
    Dict[str, Any]
        The validated arguments: every declared field present (defaults filled in), plus any
        extras when the tool allows them.

    Raises
    ------
    ValidationError
        Listing every problem found.  The handler must not be called in that case.
    """
    if raw_arguments is None:
        raw_arguments = {}
    if not isinstance(raw_arguments, Mapping):
        raise ValidationError(
            descriptor.name,
            [f"arguments must be an object, got {type(raw_arguments).__name__}"],
        )

    problems: List[str] = []
    validated: Dict[str, Any] = {}
    declared = {spec.name for spec in descriptor.parameters}

    for spec in descriptor.parameters:
        value = raw_arguments.get(spec.name)
        if value is None:
            if spec.required:
                problems.append(f"missing required field '{spec.name}'")
            else:
                # Handlers receive a copy of the declared default.
                validated[spec.name] = copy.deepcopy(spec.default)
            continue
        _check_field(spec, value, problems)
        validated[spec.name] = value

    extras = [key for key in raw_arguments if key not in declared]
    if extras:
        if descriptor.allow_extra:
            for key in extras:
                validated[key] = raw_arguments[key]
        else:
            problems.append("unexpected field(s): " + ", ".join(repr(key) for key in extras))

    if problems:
        logger.debug("Validation failed for tool '%s': %s", descriptor.name, problems)
        raise ValidationError(descriptor.name, problems)
    return validated
