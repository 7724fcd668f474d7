"""Shared fakes: a scripted model and in-process tools."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from miniagent.llm.message import Message
from miniagent.llm.provider import ModelError
from miniagent.tool.base import ToolCallError
from miniagent.tool.registry import ToolRegistry


class ScriptedProvider:
    """Model capability that replays canned completions.

    Each script entry is a completion string or an exception to raise.
    Once the script runs out, ``default`` is returned.
    """

    def __init__(self, script: list[str | Exception] | None = None, default: str = "") -> None:
        self.script = list(script or [])
        self.default = default
        self.calls: list[list[Message]] = []

    async def complete(self, messages: list[Message]) -> str:
        self.calls.append(list(messages))
        if not self.script:
            return self.default
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class KeyedProvider:
    """Model capability that answers by the first user message (the task).

    A list answer is replayed in order, repeating its last entry.
    Summaries and other requests fall back to ``default``.
    """

    def __init__(
        self,
        answers: dict[str, str | Exception | list[str]],
        default: str = "<final>ok</final>",
    ) -> None:
        self.answers = answers
        self.default = default

    async def complete(self, messages: list[Message]) -> str:
        await asyncio.sleep(0)
        task = next((m.content for m in messages if m.role.value == "user"), "")
        answer = self.answers.get(task, self.default)
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class HangingProvider:
    """Model capability whose completions never arrive."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def complete(self, messages: list[Message]) -> str:
        self.started.set()
        await asyncio.Event().wait()
        raise ModelError("unreachable")


class FakeTool:
    """Tool returning a fixed output, or raising ``ToolCallError``."""

    def __init__(self, name: str = "echo", output: str = "ok", error: str | None = None) -> None:
        self._name = name
        self.output = output
        self.error = error
        self.calls: list[Any] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"Fake {self._name} tool"

    @property
    def json_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"text": {"type": "string"}}}

    async def call(self, args: Any) -> str:
        self.calls.append(args)
        if self.error is not None:
            raise ToolCallError(self.error)
        return self.output


class BlockingTool(FakeTool):
    """Tool that blocks until released; ``started`` is set on entry."""

    def __init__(self, name: str = "block") -> None:
        super().__init__(name=name)
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False

    async def call(self, args: Any) -> str:
        self.calls.append(args)
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return "released"


def tool_code(name: str, args: str = "{}") -> str:
    return f'<tool_code>{{"name": "{name}", "args": {args}}}</tool_code>'


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(FakeTool())
    return reg
