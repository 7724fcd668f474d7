"""Built-in general-purpose tools."""

from miniagent.tool.builtin.bash import BashTool
from miniagent.tool.builtin.subagent import SubAgentTool

__all__ = [
    "BashTool",
    "SubAgentTool",
]
