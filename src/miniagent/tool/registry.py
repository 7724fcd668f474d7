"""Tool registry — register tools and describe them to the model."""

from __future__ import annotations

import json
import logging

from miniagent.tool.base import Tool

logger = logging.getLogger(__name__)

BASE_SYSTEM_PROMPT = "You are a helpful coding agent."

FINAL_ANSWER_INSTRUCTIONS = (
    "When you are finished, wrap the final answer in <final>...</final>.\n"
    "If you need more steps and no tool call is required, continue until "
    "you are ready to finalize.\n"
)

TOOL_USAGE_INSTRUCTIONS = """\
To use a tool, ONLY output a JSON block wrapped in <tool_code> tags. \
The JSON must be valid and directly deserializable. Do not double-encode \
JSON strings or escape quotes inside JSON values.
Example:
<tool_code>
{
  "name": "bash",
  "args": {
    "command": "ls -la"
  }
}
</tool_code>
To run several independent sub-tasks at once, add a <parallel> block next \
to a tool call, one JSON object per sub-task:
<parallel>
{"task": "...", "type": "code|test|doc|analysis|dynamic", "max_loops": 20}
</parallel>
After the tool execution, you will receive the output. Then you can \
continue to answer the user's question.
"""


class ToolRegistry:
    """Mapping from tool name to tool.

    Lookup is by exact name; local tools and MCP proxies are
    interchangeable behind the ``Tool`` interface.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool instance."""
        if tool.name in self._tools:
            logger.warning("Tool %s already registered, overwriting", tool.name)
        self._tools[tool.name] = tool

    def register_many(self, tools: list[Tool]) -> None:
        """Register multiple tools."""
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[Tool]:
        """All tools, sorted by name."""
        return sorted(self._tools.values(), key=lambda t: t.name)

    def names(self) -> list[str]:
        """Get all registered tool names, sorted."""
        return [t.name for t in self.list_tools()]

    def tool_instructions(self) -> str:
        """Describe every tool and the ``<tool_code>`` calling protocol."""
        parts = ["You have access to the following tools:\n\n"]
        for tool in self.list_tools():
            parts.append(f"## {tool.name}: {tool.description}\n")
            parts.append(f"Schema: {json.dumps(tool.json_schema)}\n\n")
        parts.append(TOOL_USAGE_INSTRUCTIONS)
        return "".join(parts)

    def system_prompt(self) -> str:
        """System prompt for the top-level session."""
        return (
            f"{BASE_SYSTEM_PROMPT}\n\n"
            f"{FINAL_ANSWER_INSTRUCTIONS}\n"
            f"{self.tool_instructions()}"
        )

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
