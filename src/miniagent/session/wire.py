"""Wire protocol — decouples agent logic from UI.

Events flow from agent loops to the UI. The UI subscribes to the wire
and renders events, so the interactive shell and one-shot mode share the
same agent code.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    TURN_BEGIN = "turn_begin"
    TURN_END = "turn_end"
    STEP_BEGIN = "step_begin"
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    SUBAGENT_BEGIN = "subagent_begin"
    SUBAGENT_END = "subagent_end"
    COMPACTION = "compaction"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: agents -> UI subscribers.

    Multi-producer (every running agent loop), multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_text(self, text: str, agent: str = "") -> None:
        self.send(WireEvent(type=EventType.TEXT, data={"text": text, "agent": agent}))

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str, agent: str = "") -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error, "agent": agent}))

    def send_step_begin(self, step: int, agent: str = "") -> None:
        self.send(WireEvent(type=EventType.STEP_BEGIN, data={"step": step, "agent": agent}))

    def send_tool_call(self, name: str, args: Any, agent: str = "") -> None:
        self.send(
            WireEvent(
                type=EventType.TOOL_CALL,
                data={"name": name, "args": args, "agent": agent},
            )
        )

    def send_tool_result(self, name: str, content: str, agent: str = "") -> None:
        self.send(
            WireEvent(
                type=EventType.TOOL_RESULT,
                data={"name": name, "content": content, "agent": agent},
            )
        )

    def send_subagent_begin(self, agent: str, kind: str, task: str) -> None:
        self.send(
            WireEvent(
                type=EventType.SUBAGENT_BEGIN,
                data={"agent": agent, "kind": kind, "task": task},
            )
        )

    def send_subagent_end(self, agent: str, status: str) -> None:
        self.send(
            WireEvent(
                type=EventType.SUBAGENT_END,
                data={"agent": agent, "status": status},
            )
        )

    def send_compaction(self, agent: str, messages: int) -> None:
        self.send(
            WireEvent(
                type=EventType.COMPACTION,
                data={"agent": agent, "messages": messages},
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
