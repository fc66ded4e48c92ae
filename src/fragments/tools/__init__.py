"""Policy-gated tools callable from commands."""

from fragments.tools.exceptions import ToolArgumentError, ToolError, ToolNotAllowedError, ToolNotFoundError
from fragments.tools.registry import FunctionTool, Tool, ToolRegistry

__all__ = [
    "FunctionTool",
    "Tool",
    "ToolArgumentError",
    "ToolError",
    "ToolNotAllowedError",
    "ToolNotFoundError",
    "ToolRegistry",
]
