"""Tool system — capability interface, registry, and output bounding."""

from miniagent.tool.base import (
    BaseTool,
    Tool,
    ToolCallError,
    ToolError,
    ToolOk,
    ToolResult,
)
from miniagent.tool.registry import ToolRegistry
from miniagent.tool.truncation import truncate_output

__all__ = [
    "BaseTool",
    "Tool",
    "ToolCallError",
    "ToolResult",
    "ToolOk",
    "ToolError",
    "ToolRegistry",
    "truncate_output",
]
