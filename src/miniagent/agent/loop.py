"""The core agent loop — request, parse, execute, continue."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from miniagent.agent.agent import Agent, AgentState, AgentStatus
from miniagent.agent.directive import FinalAnswer, ParallelBatch, ToolCall, parse_directive
from miniagent.agent.interrupt import InterruptSubscription, Interrupted, race
from miniagent.llm.message import Message
from miniagent.llm.provider import ModelCapability, ModelError
from miniagent.tool.base import ToolCallError
from miniagent.tool.registry import ToolRegistry

if TYPE_CHECKING:
    from miniagent.agent.orchestrator import Orchestrator
    from miniagent.session.wire import Wire

logger = logging.getLogger(__name__)

NUDGE_MESSAGE = "Continue. If finished, wrap the final answer in <final>...</final>."
CANCELLED_REASON = "cancelled by user"
MAX_ITERATIONS_REASON = "max iterations reached"
PARALLEL_RESULTS_HEADER = "Parallel tasks results:\n"
PARALLEL_RESULTS_SEPARATOR = "\n---\n"

__all__ = [
    "AgentError",
    "AgentCancelled",
    "MaxIterationsReached",
    "ModelError",
    "SpawnError",
    "agent_loop",
    "execute_tool_call",
    "format_tool_output",
    "format_parallel_results",
]


class AgentError(Exception):
    """An agent loop ended without an answer."""


class AgentCancelled(AgentError):
    """The user interrupted the agent."""


class MaxIterationsReached(AgentError):
    """The agent ran out of iterations without a final answer."""


class SpawnError(AgentError):
    """A sub-agent could not be created."""


def format_tool_output(name: str, output: str) -> str:
    return f"Tool '{name}' output:\n{output}"


def format_parallel_results(results: list[str]) -> str:
    return PARALLEL_RESULTS_HEADER + PARALLEL_RESULTS_SEPARATOR.join(results)


async def execute_tool_call(
    call: ToolCall,
    tool_registry: ToolRegistry,
    interrupt: InterruptSubscription | None = None,
) -> str:
    """Resolve and run one tool, racing the interrupt.

    A missing tool or a failed call becomes result text; only an
    interrupt escapes.

    Raises:
        Interrupted: If the interrupt fired before the tool finished.
    """
    tool = tool_registry.get(call.name)
    if tool is None:
        logger.warning("Model requested unknown tool %s", call.name)
        return f"Tool '{call.name}' not found"

    try:
        return await race(tool.call(call.args), interrupt)
    except ToolCallError as e:
        return f"Error: {e}"
    except Interrupted:
        raise
    except Exception as e:
        logger.warning("Tool %s raised: %s", call.name, e)
        return f"Error: {e}"


async def agent_loop(
    agent: Agent,
    provider: ModelCapability,
    tool_registry: ToolRegistry,
    interrupt: InterruptSubscription | None = None,
    orchestrator: Orchestrator | None = None,
    wire: Wire | None = None,
) -> str:
    """Run ``agent`` until it produces a final answer.

    Each iteration asks the model for a completion, appends it, and acts
    on the directive it carries: run a tool (and any parallel batch next
    to it), finish with a final answer, or nudge the model to continue.
    Model and tool calls are raced against ``interrupt``.

    Returns:
        The final answer text.

    Raises:
        AgentCancelled: The interrupt fired; status is ``failed(cancelled by user)``.
        MaxIterationsReached: No directive and the iteration budget is spent.
        ModelError: The model capability failed.
        AgentCancelled: The record was already failed before the loop started.
    """
    conversation = agent.conversation
    if agent.status.is_terminal:
        logger.info("Agent %s already %s, not running", agent.id, agent.status)
        if agent.status.state == AgentState.COMPLETED:
            return agent.result or ""
        raise AgentCancelled(agent.status.reason)

    if agent.iterations == 0:
        conversation.append(Message.user(agent.task))
    await agent.transition(AgentStatus.running())
    logger.info(
        "Agent %s start: kind=%s, max_iterations=%d",
        agent.id,
        agent.agent_kind,
        agent.max_iterations,
    )

    try:
        while True:
            agent.iterations += 1
            logger.debug(
                "Agent %s: iteration %d/%d",
                agent.id,
                agent.iterations,
                agent.max_iterations,
            )
            if wire:
                wire.send_step_begin(agent.iterations, agent.id)

            try:
                completion = await race(
                    provider.complete(conversation.snapshot()), interrupt
                )
            except ModelError as e:
                logger.error("Agent %s: model error: %s", agent.id, e)
                await agent.transition(AgentStatus.failed(f"model error: {e}"))
                raise

            conversation.append(Message.assistant(completion))
            if wire:
                wire.send_text(completion, agent.id)

            directive = parse_directive(completion)

            if isinstance(directive, FinalAnswer):
                conversation.append(Message.assistant(directive.text))
                await agent.transition(AgentStatus.completed(), directive.text)
                logger.info(
                    "Agent %s completed after %d iterations",
                    agent.id,
                    agent.iterations,
                )
                return directive.text

            if isinstance(directive, ToolCall):
                await _run_tool_call(
                    agent, directive, tool_registry, interrupt, orchestrator, wire
                )
            elif agent.iterations >= agent.max_iterations:
                logger.warning(
                    "Agent %s hit max iterations (%d)", agent.id, agent.max_iterations
                )
                await agent.transition(AgentStatus.failed(MAX_ITERATIONS_REASON))
                raise MaxIterationsReached(MAX_ITERATIONS_REASON)
            else:
                conversation.append(Message.user(NUDGE_MESSAGE))

            await _compact(agent, provider, wire)

    except Interrupted:
        logger.info("Agent %s cancelled by user", agent.id)
        await agent.transition(AgentStatus.failed(CANCELLED_REASON))
        raise AgentCancelled(CANCELLED_REASON) from None
    except (AgentError, ModelError):
        raise
    except Exception as e:
        logger.error("Agent %s crashed: %s", agent.id, e)
        await agent.transition(AgentStatus.failed(f"error: {e}"))
        raise


async def _run_tool_call(
    agent: Agent,
    call: ToolCall,
    tool_registry: ToolRegistry,
    interrupt: InterruptSubscription | None,
    orchestrator: Orchestrator | None,
    wire: Wire | None,
) -> None:
    if wire:
        wire.send_tool_call(call.name, call.args, agent.id)

    output = await execute_tool_call(call, tool_registry, interrupt)
    agent.conversation.append(Message.user(format_tool_output(call.name, output)))
    if wire:
        wire.send_tool_result(call.name, output, agent.id)

    if call.batch:
        await _run_batch(agent, call.batch, interrupt, orchestrator)


async def _run_batch(
    agent: Agent,
    batch: ParallelBatch,
    interrupt: InterruptSubscription | None,
    orchestrator: Orchestrator | None,
) -> None:
    if orchestrator is None:
        logger.warning(
            "Agent %s: parallel batch of %d ignored, no orchestrator",
            agent.id,
            len(batch),
        )
        return

    # The batch watches its own copy so this loop still sees the interrupt.
    watch = interrupt.clone() if interrupt is not None else None
    results = await orchestrator.run_parallel(batch, watch)
    agent.conversation.append(Message.user(format_parallel_results(results)))

    if interrupt is not None and interrupt.has_changed():
        raise Interrupted(interrupt.mark_seen())


async def _compact(agent: Agent, provider: ModelCapability, wire: Wire | None) -> None:
    try:
        compacted = await agent.conversation.compact(provider)
    except Exception as e:
        logger.debug("Agent %s: compaction failed: %s", agent.id, e)
        return
    if compacted and wire:
        wire.send_compaction(agent.id, len(agent.conversation))
