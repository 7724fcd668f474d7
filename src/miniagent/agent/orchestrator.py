"""Orchestrator — spawns sub-agents and runs them concurrently.

The orchestrator owns the registry of agent records. Records are created
by ``spawn``, read through ``get``, and only ever change status through
``Agent.transition``, so a cancel racing a completion cannot lose an
update. Nothing here holds a lock across a model or tool call: a
sub-agent may itself ask for a parallel batch, which re-enters this
object.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from miniagent.agent.agent import Agent, AgentStatus, new_agent_id
from miniagent.agent.directive import ParallelBatch, SubTaskSpec
from miniagent.agent.interrupt import InterruptSubscription, abandon
from miniagent.agent.loop import CANCELLED_REASON, AgentCancelled, AgentError, SpawnError
from miniagent.agent.registry import AgentKindRegistry
from miniagent.context import DEFAULT_MAX_TOKENS, ConversationStore
from miniagent.llm.provider import ModelCapability, ModelError
from miniagent.tool.registry import FINAL_ANSWER_INSTRUCTIONS, ToolRegistry

if TYPE_CHECKING:
    from miniagent.session.wire import Wire

logger = logging.getLogger(__name__)


class Orchestrator:
    """Registry and scheduler for sub-agents."""

    def __init__(
        self,
        provider: ModelCapability,
        tool_registry: ToolRegistry,
        kinds: AgentKindRegistry | None = None,
        wire: Wire | None = None,
        context_max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._provider = provider
        self._tool_registry = tool_registry
        self._kinds = kinds or AgentKindRegistry()
        self._wire = wire
        self._context_max_tokens = context_max_tokens
        self._agents: dict[str, Agent] = {}

    @property
    def kinds(self) -> AgentKindRegistry:
        return self._kinds

    # -------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------

    def system_prompt_for(self, agent_kind: str) -> str:
        """Kind prompt, the ``<final>`` protocol, and the tool list."""
        return (
            f"{self._kinds.prompt_for(agent_kind)}\n\n"
            f"{FINAL_ANSWER_INSTRUCTIONS}\n"
            f"{self._tool_registry.tool_instructions()}"
        )

    async def spawn(self, task: str, agent_kind: str, max_iterations: int) -> str:
        """Create a primed agent record and return its id.

        Raises:
            SpawnError: The task is empty or the prompt could not be built.
        """
        if not task.strip():
            raise SpawnError("empty task")
        try:
            prompt = self.system_prompt_for(agent_kind)
        except Exception as e:
            raise SpawnError(f"cannot build system prompt: {e}") from e

        conversation = ConversationStore(max_tokens=self._context_max_tokens)
        conversation.inject_system(prompt)

        # No await between the id check and the insert.
        agent_id = new_agent_id()
        while agent_id in self._agents:
            agent_id = new_agent_id()
        self._agents[agent_id] = Agent(
            task=task,
            agent_kind=agent_kind,
            max_iterations=max_iterations,
            id=agent_id,
            conversation=conversation,
        )
        logger.info("Spawned agent %s (%s): %s", agent_id, agent_kind, task[:100])
        return agent_id

    def get(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def list_agents(self) -> list[Agent]:
        return list(self._agents.values())

    async def cancel(self, agent_id: str, reason: str) -> bool:
        """Fail a pending or running agent and drop its partial result.

        A no-op for unknown ids and finished agents. Returns True if the
        status changed.
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            return False
        changed = await agent.transition(AgentStatus.failed(reason))
        if changed:
            logger.info("Agent %s cancelled: %s", agent_id, reason)
        return changed

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------

    async def _run_agent(
        self, agent: Agent, interrupt: InterruptSubscription | None = None
    ) -> str:
        if self._wire:
            self._wire.send_subagent_begin(agent.id, agent.agent_kind, agent.task)
        try:
            return await agent.run(
                self._provider,
                self._tool_registry,
                interrupt=interrupt,
                orchestrator=self,
                wire=self._wire,
            )
        finally:
            if self._wire:
                self._wire.send_subagent_end(agent.id, str(agent.status))

    async def delegate(
        self, spec: SubTaskSpec, interrupt: InterruptSubscription | None = None
    ) -> str:
        """Run one sub-agent to completion and describe the outcome."""
        kind = spec.agent_kind
        try:
            agent_id = await self.spawn(spec.task, kind, spec.max_iterations)
        except SpawnError as e:
            return f"SubAgent [{kind}] failed: {e}"

        agent = self._agents[agent_id]
        try:
            result = await self._run_agent(agent, interrupt)
        except AgentCancelled:
            return f"SubAgent [{kind}] cancelled by user"
        except asyncio.CancelledError:
            await self.cancel(agent_id, CANCELLED_REASON)
            raise
        except (AgentError, ModelError) as e:
            return f"SubAgent [{kind}] failed: {e}"
        return f"SubAgent [{kind}] completed:\n{result}"

    async def run_parallel(
        self,
        batch: ParallelBatch | list[SubTaskSpec],
        interrupt: InterruptSubscription | None = None,
    ) -> list[str]:
        """Run every spec as a concurrent sub-agent.

        Results come back in completion order, one line per spec: the
        answer, an ``ERROR`` line (spawn or run failure), or a
        ``CANCELLED`` line when ``interrupt`` fires first. On interrupt
        every unfinished agent is abandoned and its record cancelled.
        """
        specs = batch.tasks if isinstance(batch, ParallelBatch) else batch
        results: list[str] = []
        running: dict[asyncio.Task[str], Agent] = {}

        for spec in specs:
            try:
                agent_id = await self.spawn(
                    spec.task, spec.agent_kind, spec.max_iterations
                )
            except SpawnError as e:
                logger.warning("Spawn failed for %r: %s", spec.task[:100], e)
                results.append(f"[{spec.agent_kind}] ERROR: {spec.task} - {e}")
                continue
            agent = self._agents[agent_id]
            task = asyncio.create_task(
                self._run_agent(agent), name=f"subagent-{agent_id}"
            )
            running[task] = agent

        if not running:
            return results

        logger.info("Running %d sub-agents in parallel", len(running))
        pending: set[asyncio.Task[str]] = set(running)
        waiter = asyncio.ensure_future(interrupt.changed()) if interrupt else None
        try:
            while pending:
                watched: set[asyncio.Future] = set(pending)
                if waiter is not None:
                    watched.add(waiter)
                done, _ = await asyncio.wait(
                    watched, return_when=asyncio.FIRST_COMPLETED
                )

                for task in done:
                    if task is waiter:
                        continue
                    pending.discard(task)
                    results.append(_outcome_line(running[task], task))

                if waiter is not None and waiter in done:
                    logger.info("Parallel batch interrupted, %d unfinished", len(pending))
                    await self._abort(pending, running)
                    results.extend(
                        f"[{running[t].agent_kind}] CANCELLED: {running[t].task}"
                        for t in pending
                    )
                    pending = set()
        except asyncio.CancelledError:
            await self._abort(pending, running)
            raise
        finally:
            if waiter is not None:
                waiter.cancel()

        return results

    async def _abort(
        self, tasks: set[asyncio.Task[str]], running: dict[asyncio.Task[str], Agent]
    ) -> None:
        for task in tasks:
            abandon(task)
        for task in tasks:
            await self.cancel(running[task].id, CANCELLED_REASON)


def _outcome_line(agent: Agent, task: asyncio.Task[str]) -> str:
    kind = agent.agent_kind
    if task.cancelled():
        return f"[{kind}] CANCELLED: {agent.task}"
    error = task.exception()
    if error is None:
        return f"[{kind}] Task: {agent.task}\nResult: {task.result()}"
    if isinstance(error, AgentCancelled):
        return f"[{kind}] CANCELLED: {agent.task}"
    if not isinstance(error, (AgentError, ModelError)):
        logger.error("Agent %s crashed: %s", agent.id, error, exc_info=error)
    return f"[{kind}] ERROR: {agent.task} - {error}"
