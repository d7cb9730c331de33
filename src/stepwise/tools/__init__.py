"""
Tool registry for stepwise.

Tools are described by :class:`ToolDescriptor` (name, description, parameter list, handler) and
collected in a :class:`ToolRegistry`.  Each agent owns its own registry; the sample toolboxes in
this package build descriptors around explicitly owned stores.
"""

from stepwise.tools.registry import (
    ParameterSpec,
    ParamKind,
    ToolDescriptor,
    ToolHandler,
    ToolRegistry,
    param,
)
from stepwise.tools.validation import validate_arguments

__all__ = [
    "ParamKind",
    "ParameterSpec",
    "ToolDescriptor",
    "ToolHandler",
    "ToolRegistry",
    "param",
    "validate_arguments",
]
