"""Agent record — one sub-agent's task, conversation, and lifecycle."""

from __future__ import annotations

import asyncio
import enum
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from miniagent.agent.directive import DEFAULT_AGENT_KIND, DEFAULT_MAX_ITERATIONS
from miniagent.context import ConversationStore

if TYPE_CHECKING:
    from miniagent.agent.interrupt import InterruptSubscription
    from miniagent.agent.orchestrator import Orchestrator
    from miniagent.llm.provider import ModelCapability
    from miniagent.session.wire import Wire
    from miniagent.tool.registry import ToolRegistry


class AgentState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentStatus:
    """Lifecycle status: Pending -> Running -> Completed | Failed(reason)."""

    state: AgentState
    reason: str = ""

    @classmethod
    def pending(cls) -> AgentStatus:
        return cls(AgentState.PENDING)

    @classmethod
    def running(cls) -> AgentStatus:
        return cls(AgentState.RUNNING)

    @classmethod
    def completed(cls) -> AgentStatus:
        return cls(AgentState.COMPLETED)

    @classmethod
    def failed(cls, reason: str) -> AgentStatus:
        return cls(AgentState.FAILED, reason)

    @property
    def is_terminal(self) -> bool:
        return self.state in (AgentState.COMPLETED, AgentState.FAILED)

    def __str__(self) -> str:
        if self.state == AgentState.FAILED:
            return f"failed({self.reason})"
        return self.state.value


def new_agent_id() -> str:
    """Short unique id: the first group of a UUID4."""
    return uuid.uuid4().hex[:8]


@dataclass
class Agent:
    """A spawned sub-agent.

    Status changes go through ``transition`` under the record's lock so a
    racing cancel and a racing completion cannot lose an update. The lock
    is never held across a model or tool call.
    """

    task: str
    agent_kind: str = DEFAULT_AGENT_KIND
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    id: str = field(default_factory=new_agent_id)
    conversation: ConversationStore = field(default_factory=ConversationStore)
    status: AgentStatus = field(default_factory=AgentStatus.pending)
    result: str | None = None
    iterations: int = 0

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def transition(
        self, status: AgentStatus, result: str | None = None
    ) -> bool:
        """Move to ``status`` unless the record is already terminal.

        Returns True if the status changed.
        """
        async with self._lock:
            if self.status.is_terminal:
                return False
            self.status = status
            self.result = result
            return True

    async def run(
        self,
        provider: ModelCapability,
        tool_registry: ToolRegistry,
        interrupt: InterruptSubscription | None = None,
        orchestrator: Orchestrator | None = None,
        wire: Wire | None = None,
    ) -> str:
        """Drive this agent's loop to completion. See ``agent_loop``."""
        from miniagent.agent.loop import agent_loop

        return await agent_loop(
            self,
            provider,
            tool_registry,
            interrupt=interrupt,
            orchestrator=orchestrator,
            wire=wire,
        )
