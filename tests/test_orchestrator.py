"""Tests for miniagent.agent.orchestrator (spawn, cancel, parallel batches)."""

from __future__ import annotations

import asyncio

import pytest

from conftest import BlockingTool, KeyedProvider, ScriptedProvider, tool_code
from miniagent.agent.agent import AgentState, AgentStatus
from miniagent.agent.directive import ParallelBatch, SubTaskSpec
from miniagent.agent.interrupt import InterruptChannel
from miniagent.agent.loop import AgentCancelled, SpawnError
from miniagent.agent.orchestrator import Orchestrator
from miniagent.agent.registry import AgentKind, AgentKindRegistry
from miniagent.llm.message import Role
from miniagent.llm.provider import ModelError
from miniagent.session.wire import EventType, Wire
from miniagent.tool.builtin.subagent import SubAgentTool
from miniagent.tool.registry import ToolRegistry


async def _until_completed(orch: Orchestrator, task: str) -> None:
    while not any(
        a.task == task and a.status == AgentStatus.completed() for a in orch.list_agents()
    ):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# spawn / get / cancel
# ---------------------------------------------------------------------------


class TestSpawn:
    async def test_spawn_primes_system_prompt(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        agent_id = await orch.spawn("write code", "code", 7)

        agent = orch.get(agent_id)
        assert agent is not None
        assert agent.task == "write code"
        assert agent.max_iterations == 7
        assert agent.status == AgentStatus.pending()
        system = agent.conversation.messages[0]
        assert system.role == Role.SYSTEM
        assert system.content.startswith("You are a Code SubAgent")
        assert "wrap the final answer in <final>...</final>" in system.content
        assert "## echo: Fake echo tool" in system.content
        assert len(agent.conversation) == 1

    async def test_unknown_kind_uses_dynamic_prompt(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        agent = orch.get(await orch.spawn("t", "wizard", 20))
        assert agent is not None
        assert agent.conversation.messages[0].content.startswith(
            "You are a general-purpose SubAgent"
        )

    async def test_kind_lookup_is_case_insensitive(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        agent = orch.get(await orch.spawn("t", "TEST", 20))
        assert agent is not None
        assert agent.conversation.messages[0].content.startswith("You are a Test SubAgent")

    async def test_custom_kind(self, registry: ToolRegistry) -> None:
        kinds = AgentKindRegistry()
        kinds.register(AgentKind(name="security", prompt="You audit code."))
        orch = Orchestrator(ScriptedProvider(), registry, kinds=kinds)
        agent = orch.get(await orch.spawn("t", "security", 20))
        assert agent is not None
        assert agent.conversation.messages[0].content.startswith("You audit code.")

    async def test_ids_are_unique(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        ids = {await orch.spawn(f"t{i}", "dynamic", 20) for i in range(50)}
        assert len(ids) == 50
        assert len(orch.list_agents()) == 50

    async def test_empty_task_fails(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        with pytest.raises(SpawnError):
            await orch.spawn("   ", "code", 20)
        assert orch.list_agents() == []

    async def test_subagent_context_threshold(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry, context_max_tokens=123)
        agent = orch.get(await orch.spawn("t", "code", 20))
        assert agent is not None
        assert agent.conversation.max_tokens == 123

    def test_get_unknown(self, registry: ToolRegistry) -> None:
        assert Orchestrator(ScriptedProvider(), registry).get("missing") is None


class TestCancel:
    async def test_cancel_pending(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        agent_id = await orch.spawn("t", "code", 20)

        assert await orch.cancel(agent_id, "stop") is True
        agent = orch.get(agent_id)
        assert agent is not None
        assert agent.status == AgentStatus.failed("stop")

    async def test_cancel_clears_partial_result(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        agent = orch.get(await orch.spawn("t", "code", 20))
        assert agent is not None
        await agent.transition(AgentStatus.running(), "partial")

        await orch.cancel(agent.id, "stop")
        assert agent.result is None

    async def test_cancel_completed_is_noop(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        agent = orch.get(await orch.spawn("t", "code", 20))
        assert agent is not None
        await agent.transition(AgentStatus.completed(), "answer")

        assert await orch.cancel(agent.id, "stop") is False
        assert agent.status == AgentStatus.completed()
        assert agent.result == "answer"

    async def test_cancel_failed_is_noop(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        agent_id = await orch.spawn("t", "code", 20)
        await orch.cancel(agent_id, "first")

        assert await orch.cancel(agent_id, "second") is False
        agent = orch.get(agent_id)
        assert agent is not None
        assert agent.status == AgentStatus.failed("first")

    async def test_cancel_unknown(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        assert await orch.cancel("missing", "stop") is False


# ---------------------------------------------------------------------------
# run_parallel
# ---------------------------------------------------------------------------


class TestRunParallel:
    async def test_all_succeed(self, registry: ToolRegistry) -> None:
        provider = KeyedProvider({"A": "<final>a done</final>", "B": "<final>b done</final>"})
        orch = Orchestrator(provider, registry)
        batch = ParallelBatch([SubTaskSpec("A", "code"), SubTaskSpec("B", "test")])

        results = await orch.run_parallel(batch)

        assert sorted(results) == [
            "[code] Task: A\nResult: a done",
            "[test] Task: B\nResult: b done",
        ]
        assert all(a.status == AgentStatus.completed() for a in orch.list_agents())

    async def test_spawn_failure_keeps_siblings(self, registry: ToolRegistry) -> None:
        provider = KeyedProvider({"A": "<final>a</final>", "C": "<final>c</final>"})
        orch = Orchestrator(provider, registry)
        specs = [SubTaskSpec("A", "code"), SubTaskSpec("", "doc"), SubTaskSpec("C", "test")]

        results = await orch.run_parallel(ParallelBatch(specs))

        assert len(results) == 3
        errors = [r for r in results if "ERROR" in r]
        assert errors == ["[doc] ERROR:  - empty task"]
        assert sum(1 for r in results if "Result:" in r) == 2

    async def test_run_failures_are_labelled(self, registry: ToolRegistry) -> None:
        provider = KeyedProvider(
            {"ok": "<final>fine</final>", "boom": ModelError("rate limited"), "stuck": "hmm"}
        )
        orch = Orchestrator(provider, registry)
        specs = [
            SubTaskSpec("ok", "code"),
            SubTaskSpec("boom", "code"),
            SubTaskSpec("stuck", "code", max_iterations=1),
        ]

        results = await orch.run_parallel(specs)

        assert len(results) == 3
        assert "[code] Task: ok\nResult: fine" in results
        assert "[code] ERROR: boom - rate limited" in results
        assert "[code] ERROR: stuck - max iterations reached" in results

    async def test_unexpected_failure_leaves_terminal_record(self, registry: ToolRegistry) -> None:
        provider = KeyedProvider({"A": ConnectionError("socket reset")})
        orch = Orchestrator(provider, registry)

        results = await orch.run_parallel([SubTaskSpec("A", "code")])

        assert results == ["[code] ERROR: A - socket reset"]
        [agent] = orch.list_agents()
        assert agent.status == AgentStatus.failed("error: socket reset")

    async def test_cancelled_pending_agent_never_runs(self, registry: ToolRegistry) -> None:
        provider = ScriptedProvider(["<final>late</final>"])
        orch = Orchestrator(provider, registry)
        agent_id = await orch.spawn("A", "code", 5)
        await orch.cancel(agent_id, "cancelled by user")

        agent = orch.get(agent_id)
        with pytest.raises(AgentCancelled):
            await agent.run(provider, registry, orchestrator=orch)

        assert provider.calls == []
        assert agent.status == AgentStatus.failed("cancelled by user")

    async def test_empty_batch(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(ScriptedProvider(), registry)
        assert await orch.run_parallel(ParallelBatch([])) == []

    async def test_interrupt_cancels_outstanding(self) -> None:
        registry = ToolRegistry()
        blocker = BlockingTool()
        registry.register(blocker)
        provider = KeyedProvider({"fast": "<final>quick</final>", "slow": tool_code("block")})
        orch = Orchestrator(provider, registry)
        channel = InterruptChannel()
        specs = [SubTaskSpec("fast", "code"), SubTaskSpec("slow", "test")]

        run = asyncio.create_task(orch.run_parallel(specs, channel.subscribe()))
        await asyncio.wait_for(blocker.started.wait(), timeout=1)
        await asyncio.wait_for(_until_completed(orch, "fast"), timeout=1)
        channel.interrupt()
        results = await asyncio.wait_for(run, timeout=1)

        assert sorted(results) == [
            "[code] Task: fast\nResult: quick",
            "[test] CANCELLED: slow",
        ]
        statuses = {a.task: a.status for a in orch.list_agents()}
        assert statuses["fast"] == AgentStatus.completed()
        assert statuses["slow"] == AgentStatus.failed("cancelled by user")

    async def test_outer_cancellation_cancels_records(self) -> None:
        registry = ToolRegistry()
        blocker = BlockingTool()
        registry.register(blocker)
        orch = Orchestrator(KeyedProvider({}, default=tool_code("block")), registry)

        run = asyncio.create_task(orch.run_parallel([SubTaskSpec("slow", "code")]))
        await asyncio.wait_for(blocker.started.wait(), timeout=1)
        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

        (agent,) = orch.list_agents()
        assert agent.status.state == AgentState.FAILED

    async def test_nested_batches(self, registry: ToolRegistry) -> None:
        provider = KeyedProvider(
            {
                "outer": [
                    tool_code("echo") + '<parallel>{"task": "inner"}</parallel>',
                    "<final>outer done</final>",
                ],
                "inner": "<final>deep</final>",
            }
        )
        orch = Orchestrator(provider, registry)

        results = await orch.run_parallel([SubTaskSpec("outer", "code")])

        assert results == ["[code] Task: outer\nResult: outer done"]
        inner = [a for a in orch.list_agents() if a.task == "inner"]
        assert len(inner) == 1
        assert inner[0].status == AgentStatus.completed()
        outer = [a for a in orch.list_agents() if a.task == "outer"][0]
        assert any(
            m.content == "Parallel tasks results:\n[dynamic] Task: inner\nResult: deep"
            for m in outer.conversation.messages
        )

    async def test_wire_events(self, registry: ToolRegistry) -> None:
        wire = Wire()
        queue = wire.subscribe()
        orch = Orchestrator(KeyedProvider({}), registry, wire=wire)

        await orch.run_parallel([SubTaskSpec("A", "code")])

        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        begin = [e for e in events if e and e.type == EventType.SUBAGENT_BEGIN]
        end = [e for e in events if e and e.type == EventType.SUBAGENT_END]
        assert begin[0].data["kind"] == "code"
        assert end[0].data["status"] == "completed"


# ---------------------------------------------------------------------------
# delegate / subagent tool
# ---------------------------------------------------------------------------


class TestDelegate:
    async def test_completed(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(KeyedProvider({"A": "<final>yes</final>"}), registry)
        out = await orch.delegate(SubTaskSpec("A", "code"))
        assert out == "SubAgent [code] completed:\nyes"

    async def test_failed(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(KeyedProvider({"A": "no directive"}), registry)
        out = await orch.delegate(SubTaskSpec("A", "code", max_iterations=1))
        assert out == "SubAgent [code] failed: max iterations reached"

    async def test_spawn_failure(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(KeyedProvider({}), registry)
        out = await orch.delegate(SubTaskSpec("", "code"))
        assert out == "SubAgent [code] failed: empty task"

    async def test_cancelled_by_interrupt(self) -> None:
        registry = ToolRegistry()
        blocker = BlockingTool()
        registry.register(blocker)
        orch = Orchestrator(KeyedProvider({"A": tool_code("block")}), registry)
        channel = InterruptChannel()

        run = asyncio.create_task(orch.delegate(SubTaskSpec("A", "doc"), channel.subscribe()))
        await asyncio.wait_for(blocker.started.wait(), timeout=1)
        channel.interrupt()

        assert await asyncio.wait_for(run, timeout=1) == "SubAgent [doc] cancelled by user"
        (agent,) = orch.list_agents()
        assert agent.status == AgentStatus.failed("cancelled by user")

    async def test_subagent_tool_dispatch(self, registry: ToolRegistry) -> None:
        orch = Orchestrator(KeyedProvider({"summarize": "<final>short</final>"}), registry)
        tool = SubAgentTool(dispatch_fn=orch.delegate)

        out = await tool.call({"task": "summarize", "type": "doc"})

        assert out == "SubAgent [doc] completed:\nshort"
        (agent,) = orch.list_agents()
        assert agent.max_iterations == 20
