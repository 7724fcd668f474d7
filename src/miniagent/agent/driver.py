"""Session driver — the top-level chat turn loop and slash commands.

The driver owns the session conversation. A chat turn works like a
sub-agent loop with a few differences: the iteration budget is per
turn, running out of it just ends the turn, and model errors and
interrupts are printed instead of raised so the session keeps going.
"""

from __future__ import annotations

import enum
import logging
import re
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from miniagent.agent.directive import FinalAnswer, ToolCall, parse_directive
from miniagent.agent.interrupt import InterruptChannel, InterruptSubscription, Interrupted, race
from miniagent.agent.loop import (
    NUDGE_MESSAGE,
    execute_tool_call,
    format_parallel_results,
    format_tool_output,
)
from miniagent.context import DEFAULT_MAX_TOKENS, ConversationStore
from miniagent.llm.message import Message
from miniagent.llm.provider import ModelCapability, ModelError
from miniagent.session.store import SessionError, SessionManager
from miniagent.session.wire import EventType, WireEvent
from miniagent.tool.registry import ToolRegistry

if TYPE_CHECKING:
    from miniagent.agent.orchestrator import Orchestrator
    from miniagent.session.wire import Wire

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOOPS = 50

COMMANDS: dict[str, str] = {
    "/help": "Show this help",
    "/save <name>": "Save the conversation",
    "/load <name>": "Load a saved conversation",
    "/list": "List saved conversations",
    "/clear": "Clear the conversation",
    "/tools": "List available tools",
    "/quit": "Exit (alias: /exit)",
}

_TOOL_CODE_SPLIT_RE = re.compile(r"(<tool_code>.*?</tool_code>)", re.DOTALL)


class TurnOutcome(enum.Enum):
    """Why did the chat turn end?"""

    COMPLETE = "complete"  # Final answer
    MAX_LOOPS = "max_loops"  # Iteration budget spent
    ERROR = "error"  # Model error
    CANCELLED = "cancelled"  # Ctrl-C


class SessionDriver:
    """Interactive session over one conversation store."""

    def __init__(
        self,
        provider: ModelCapability,
        tool_registry: ToolRegistry,
        orchestrator: Orchestrator,
        sessions: SessionManager,
        interrupt: InterruptChannel,
        console: Console | None = None,
        max_loops: int = DEFAULT_MAX_LOOPS,
        context_max_tokens: int = DEFAULT_MAX_TOKENS,
        wire: Wire | None = None,
    ) -> None:
        self.provider = provider
        self.tool_registry = tool_registry
        self.orchestrator = orchestrator
        self.sessions = sessions
        self.interrupt = interrupt
        self.console = console or Console()
        self.max_loops = max_loops
        self.wire = wire
        self.store = ConversationStore(max_tokens=context_max_tokens)
        self.prime()

    def prime(self) -> None:
        """(Re-)inject the system prompt at the head of the conversation."""
        self.store.inject_system(self.tool_registry.system_prompt())

    async def handle_line(self, line: str) -> bool:
        """Handle one line of user input. Returns False to quit."""
        line = line.strip()
        if not line:
            return True
        if line.startswith("/"):
            return await self.handle_command(line)
        await self.run_turn(line)
        return True

    # -------------------------------------------------------------------
    # Slash commands
    # -------------------------------------------------------------------

    async def handle_command(self, line: str) -> bool:
        """Run a slash command. Never calls the model. Returns False to quit."""
        parts = line.split(maxsplit=1)
        command = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if command in ("/quit", "/exit"):
            return False

        if command == "/help":
            table = Table(show_header=False, box=None)
            for usage, help_text in COMMANDS.items():
                table.add_row(f"[bold]{usage}[/bold]", help_text)
            self.console.print(table)

        elif command == "/save":
            if not arg:
                self.console.print("Usage: /save <name>")
                return True
            try:
                await self.sessions.save(arg, self.store)
            except SessionError as e:
                self.console.print(f"[red]Error:[/red] {escape(str(e))}")
                return True
            self.console.print(f"Session saved: {escape(arg)}")

        elif command == "/load":
            if not arg:
                self.console.print("Usage: /load <name>")
                return True
            try:
                count = await self.sessions.load(arg, self.store)
            except SessionError as e:
                self.console.print(f"[red]Error:[/red] {escape(str(e))}")
                return True
            self.prime()
            self.console.print(f"Session loaded: {escape(arg)} ({count} messages)")

        elif command == "/list":
            names = self.sessions.list_sessions()
            if not names:
                self.console.print("No saved sessions.")
            for name in names:
                self.console.print(f"  {escape(name)}")

        elif command == "/clear":
            self.store.reset()
            self.prime()
            self.console.print("Context cleared.")

        elif command == "/tools":
            for tool in self.tool_registry.list_tools():
                self.console.print(
                    f"  [bold]{escape(tool.name)}[/bold]: {escape(tool.description)}"
                )

        else:
            self.console.print(
                f"Unknown command: {escape(command)}. Type /help for commands."
            )
        return True

    # -------------------------------------------------------------------
    # Chat turn
    # -------------------------------------------------------------------

    async def run_turn(self, text: str) -> TurnOutcome:
        """Run one user turn to a final answer, the loop budget, or Ctrl-C."""
        watch = self.interrupt.subscribe()
        self.store.append(Message.user(text))
        self._emit(EventType.TURN_BEGIN, {"text": text})

        outcome = TurnOutcome.MAX_LOOPS
        try:
            for step in range(1, self.max_loops + 1):
                logger.debug("Turn step %d/%d", step, self.max_loops)
                try:
                    completion = await race(
                        self.provider.complete(self.store.snapshot()), watch
                    )
                except ModelError as e:
                    logger.error("Model error: %s", e)
                    self.console.print(f"[red]Error:[/red] {escape(str(e))}")
                    outcome = TurnOutcome.ERROR
                    break

                self._render_completion(completion)
                self.store.append(Message.assistant(completion))

                directive = parse_directive(completion)
                if isinstance(directive, FinalAnswer):
                    self.store.append(Message.assistant(directive.text))
                    outcome = TurnOutcome.COMPLETE
                    break
                if isinstance(directive, ToolCall):
                    await self._run_tool_call(directive, watch)
                else:
                    self.store.append(Message.user(NUDGE_MESSAGE))
            else:
                logger.warning("Turn hit max loops (%d)", self.max_loops)
        except Interrupted:
            self.console.print("\n[yellow]CTRL-C[/yellow]")
            outcome = TurnOutcome.CANCELLED

        await self._compact()
        self._emit(EventType.TURN_END, {"outcome": outcome.value})
        return outcome

    async def _run_tool_call(self, call: ToolCall, watch: InterruptSubscription) -> None:
        output = await execute_tool_call(call, self.tool_registry, watch)
        self.store.append(Message.user(format_tool_output(call.name, output)))
        self.console.print(
            Panel(escape(output), title=f"{escape(call.name)} output", style="dim")
        )

        if call.batch:
            self.console.print(f"[cyan]Running {len(call.batch)} sub-agents...[/cyan]")
            results = await self.orchestrator.run_parallel(call.batch, watch.clone())
            joined = format_parallel_results(results)
            self.store.append(Message.user(joined))
            self.console.print(Panel(escape(joined), title="parallel", style="dim"))
            if watch.has_changed():
                raise Interrupted(watch.mark_seen())

    async def _compact(self) -> None:
        before = len(self.store)
        try:
            compacted = await self.store.compact(self.provider)
        except Exception as e:
            logger.error("Compaction failed: %s", e)
            self.console.print(f"[red]Compaction error:[/red] {escape(str(e))}")
            return
        if compacted:
            self.console.print(
                f"[dim]Context compacted ({before} -> {len(self.store)} messages)[/dim]"
            )
            if self.wire:
                self.wire.send_compaction("", len(self.store))

    def _render_completion(self, text: str) -> None:
        for segment in _TOOL_CODE_SPLIT_RE.split(text):
            if not segment:
                continue
            if segment.startswith("<tool_code>"):
                payload = segment[len("<tool_code>") : -len("</tool_code>")].strip()
                self.console.print(
                    Panel(Syntax(payload, "json", word_wrap=True), title="tool_code")
                )
            elif segment.strip():
                self.console.print(segment.strip(), markup=False, highlight=False)

    def _emit(self, event_type: EventType, data: dict) -> None:
        if self.wire:
            self.wire.send(WireEvent(type=event_type, data=data))
