"""Agent system — directives, records, loop, orchestrator, driver."""

from miniagent.agent.agent import Agent, AgentState, AgentStatus
from miniagent.agent.directive import (
    FinalAnswer,
    ParallelBatch,
    SubTaskSpec,
    ToolCall,
    parse_directive,
)
from miniagent.agent.interrupt import InterruptChannel, InterruptSubscription, Interrupted
from miniagent.agent.loop import (
    AgentCancelled,
    AgentError,
    MaxIterationsReached,
    SpawnError,
    agent_loop,
)
from miniagent.agent.orchestrator import Orchestrator
from miniagent.agent.registry import AgentKind, AgentKindRegistry

__all__ = [
    "Agent",
    "AgentState",
    "AgentStatus",
    "FinalAnswer",
    "ParallelBatch",
    "SubTaskSpec",
    "ToolCall",
    "parse_directive",
    "InterruptChannel",
    "InterruptSubscription",
    "Interrupted",
    "AgentError",
    "AgentCancelled",
    "MaxIterationsReached",
    "SpawnError",
    "agent_loop",
    "Orchestrator",
    "AgentKind",
    "AgentKindRegistry",
]
