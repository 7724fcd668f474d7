"""Sub-agent tool — delegate one task to a freshly spawned sub-agent."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Callable, ClassVar

from pydantic import BaseModel, Field

from miniagent.agent.directive import (
    DEFAULT_AGENT_KIND,
    DEFAULT_MAX_ITERATIONS,
    SubTaskSpec,
)
from miniagent.tool.base import BaseTool, ToolError, ToolOk, ToolResult

DispatchFn = Callable[[SubTaskSpec], Awaitable[str]]


class SubAgentParams(BaseModel):
    task: str = Field(description="The task description for the subagent")
    type: str = Field(
        default=DEFAULT_AGENT_KIND,
        description="SubAgent type: code, test, doc, analysis, or dynamic (default)",
    )
    max_loops: int = Field(
        default=DEFAULT_MAX_ITERATIONS,
        ge=0,
        description="Maximum loop iterations (default: 20)",
    )


class SubAgentTool(BaseTool[SubAgentParams]):
    """Spawn a sub-agent with its own conversation and wait for its answer.

    The sub-agent's failure or cancellation comes back as ordinary text
    so the calling model can react to it.
    """

    name: ClassVar[str] = "subagent"
    description: ClassVar[str] = (
        "Spawn a new subagent to handle a specific task "
        "(parallel execution supported via <parallel>)"
    )
    param_model: ClassVar[type[BaseModel]] = SubAgentParams

    def __init__(self, dispatch_fn: DispatchFn | None = None) -> None:
        self._dispatch_fn = dispatch_fn

    def bind(self, dispatch_fn: DispatchFn) -> None:
        """Attach the orchestrator once it exists."""
        self._dispatch_fn = dispatch_fn

    async def execute(self, params: SubAgentParams) -> ToolResult:
        if self._dispatch_fn is None:
            return ToolError(output="Sub-agent dispatch not configured.")

        spec = SubTaskSpec(
            task=params.task,
            agent_kind=params.type,
            max_iterations=params.max_loops,
        )
        output = await self._dispatch_fn(spec)
        return ToolOk(output=output, brief=f"subagent:{params.type}")
