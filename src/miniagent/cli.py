"""CLI entry point for miniagent."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.markup import escape

from miniagent import __version__
from miniagent.config import MiniAgentConfig

if TYPE_CHECKING:
    from miniagent.agent.driver import SessionDriver
    from miniagent.agent.interrupt import InterruptChannel
    from miniagent.session.wire import Wire

app = typer.Typer(
    name="miniagent",
    help="A minimal agentic coding assistant with sub-agents and MCP tools.",
    no_args_is_help=True,
)

console = Console()

# Third-party loggers that are chatty at INFO.
_NOISY_LOGGERS = ("litellm", "LiteLLM", "httpx", "httpcore", "mcp")


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Log to ``log_file`` (or stderr), keeping the chat output clean."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        filename=log_file,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@dataclass
class SessionSetup:
    """Everything a chat or one-shot run needs."""

    driver: SessionDriver
    interrupt: InterruptChannel
    wire: Wire


async def _build_session(config: MiniAgentConfig, stack: AsyncExitStack) -> SessionSetup:
    """Wire up provider, tools, orchestrator, and driver.

    MCP sessions are entered on ``stack`` and close with it.
    """
    from miniagent.agent.driver import SessionDriver
    from miniagent.agent.interrupt import InterruptChannel
    from miniagent.agent.orchestrator import Orchestrator
    from miniagent.agent.registry import AgentKindRegistry
    from miniagent.llm.provider import create_provider
    from miniagent.mcp import register_mcp_tools
    from miniagent.session.store import SessionManager
    from miniagent.session.wire import Wire
    from miniagent.tool.builtin import BashTool, SubAgentTool
    from miniagent.tool.registry import ToolRegistry

    provider = create_provider(
        model=config.llm.model,
        temperature=config.llm.temperature,
        max_tokens=config.llm.max_tokens,
        api_base=config.llm.api_base,
        api_key=config.llm.api_key,
    )

    wire = Wire()
    interrupt = InterruptChannel()

    tool_registry = ToolRegistry()
    subagent_tool = SubAgentTool()
    tool_registry.register_many([BashTool(cwd=os.getcwd()), subagent_tool])

    if not config.disable_mcp:
        count = await register_mcp_tools(tool_registry, config.mcp_config, stack)
        if count:
            console.print(f"[dim]Registered {count} MCP tools[/dim]")

    kinds = AgentKindRegistry()
    if config.agents_dir:
        kinds.discover([os.path.abspath(config.agents_dir)])

    orchestrator = Orchestrator(
        provider=provider,
        tool_registry=tool_registry,
        kinds=kinds,
        wire=wire,
        context_max_tokens=config.agent.subagent_max_tokens,
    )
    subagent_tool.bind(
        lambda spec: orchestrator.delegate(spec, interrupt.subscribe())
    )

    driver = SessionDriver(
        provider=provider,
        tool_registry=tool_registry,
        orchestrator=orchestrator,
        sessions=SessionManager(config.session_dir),
        interrupt=interrupt,
        console=console,
        max_loops=config.agent.max_loops,
        context_max_tokens=config.agent.context_max_tokens,
        wire=wire,
    )
    return SessionSetup(driver=driver, interrupt=interrupt, wire=wire)


async def _consume_wire(wire: Wire) -> None:
    """Render sub-agent progress from the wire."""
    from miniagent.session.wire import EventType

    queue = wire.subscribe()
    while True:
        event = await queue.get()
        if event is None:
            break

        d = event.data
        agent = d.get("agent", "")
        if not agent:
            continue

        if event.type == EventType.SUBAGENT_BEGIN:
            console.print(
                f"[cyan]--- SubAgent {agent} [{escape(d.get('kind', ''))}]: "
                f"{escape(d.get('task', '')[:80])}[/cyan]"
            )
        elif event.type == EventType.SUBAGENT_END:
            console.print(f"[cyan]--- {agent} done: {escape(d.get('status', ''))}[/cyan]")
        elif event.type == EventType.STEP_BEGIN:
            console.print(f"[dim]  [{agent}] step {d.get('step', 0)}[/dim]")
        elif event.type == EventType.TOOL_CALL:
            console.print(f"[dim]  [{agent}] > {escape(d.get('name', '?'))}[/dim]")
        elif event.type == EventType.TOOL_RESULT:
            content = d.get("content", "")
            first_line = content.split("\n")[0][:100] if content else "OK"
            console.print(
                f"[dim]  [{agent}] < {escape(d.get('name', '?'))}: {escape(first_line)}[/dim]"
            )
        elif event.type == EventType.COMPACTION:
            console.print(f"[dim]  [{agent}] context compacted[/dim]")
        elif event.type == EventType.ERROR:
            console.print(f"[red]  [{agent}] {escape(d.get('error', ''))}[/red]")

    wire.unsubscribe(queue)


def _install_interrupt(interrupt: InterruptChannel) -> None:
    """Make Ctrl-C bump the interrupt generation instead of exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt.interrupt)
    except NotImplementedError:
        # Windows event loops have no add_signal_handler.
        signal.signal(
            signal.SIGINT, lambda *_: interrupt.interrupt_threadsafe(loop)
        )


async def _chat(config: MiniAgentConfig) -> None:
    async with AsyncExitStack() as stack:
        setup = await _build_session(config, stack)
        consumer = asyncio.create_task(_consume_wire(setup.wire))
        _install_interrupt(setup.interrupt)

        console.print(f"[bold]miniagent v{__version__}[/bold]  model: {config.llm.model}")
        console.print(f"Tools: {', '.join(setup.driver.tool_registry.names())}")
        console.print("Type /help for commands, Ctrl-C to interrupt, /quit to exit.")

        try:
            while True:
                try:
                    line = await asyncio.to_thread(console.input, "[bold green]> [/bold green]")
                except EOFError:
                    break
                if not await setup.driver.handle_line(line):
                    break
        finally:
            setup.wire.close()
            await consumer


async def _run_once(config: MiniAgentConfig, task: str) -> bool:
    from miniagent.agent.driver import TurnOutcome

    async with AsyncExitStack() as stack:
        setup = await _build_session(config, stack)
        consumer = asyncio.create_task(_consume_wire(setup.wire))
        _install_interrupt(setup.interrupt)
        try:
            outcome = await setup.driver.run_turn(task)
        finally:
            setup.wire.close()
            await consumer
    return outcome == TurnOutcome.COMPLETE


def _load_config(
    config_file: str | None,
    model: str | None,
    api_base: str | None,
    session_dir: str | None,
    max_loops: int | None,
    max_tokens: int | None,
    mcp_config: str | None,
    disable_mcp: bool,
) -> MiniAgentConfig:
    config = MiniAgentConfig.load(config_file)
    if model:
        config.llm.model = model
    if api_base:
        config.llm.api_base = api_base
    if session_dir:
        config.session_dir = session_dir
    if max_loops is not None:
        config.agent.max_loops = max_loops
    if max_tokens is not None:
        config.agent.context_max_tokens = max_tokens
    if mcp_config:
        config.mcp_config = mcp_config
    if disable_mcp:
        config.disable_mcp = True
    return config


_MODEL = typer.Option(None, "--model", "-m", help="LLM model (litellm format).")
_API_BASE = typer.Option(None, "--api-base", help="Custom API endpoint.")
_SESSION_DIR = typer.Option(None, "--session-dir", help="Session storage directory.")
_MAX_LOOPS = typer.Option(None, "--max-loops", help="Max iterations per turn.")
_MAX_TOKENS = typer.Option(
    None, "--max-tokens", help="Context size that triggers compaction."
)
_MCP_CONFIG = typer.Option(None, "--mcp-config", help="MCP server config file.")
_DISABLE_MCP = typer.Option(False, "--disable-mcp", help="Do not start MCP servers.")
_CONFIG = typer.Option(None, "--config", "-c", help="Config file path.")
_VERBOSE = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


@app.command()
def chat(
    model: str | None = _MODEL,
    api_base: str | None = _API_BASE,
    session_dir: str | None = _SESSION_DIR,
    max_loops: int | None = _MAX_LOOPS,
    max_tokens: int | None = _MAX_TOKENS,
    mcp_config: str | None = _MCP_CONFIG,
    disable_mcp: bool = _DISABLE_MCP,
    config_file: str | None = _CONFIG,
    verbose: bool = _VERBOSE,
) -> None:
    """Start an interactive chat session."""
    config = _load_config(
        config_file, model, api_base, session_dir, max_loops, max_tokens,
        mcp_config, disable_mcp,
    )
    setup_logging(verbose, config.log_file)
    asyncio.run(_chat(config))


@app.command()
def run(
    task: str = typer.Argument(help="The task to run."),
    model: str | None = _MODEL,
    api_base: str | None = _API_BASE,
    session_dir: str | None = _SESSION_DIR,
    max_loops: int | None = _MAX_LOOPS,
    max_tokens: int | None = _MAX_TOKENS,
    mcp_config: str | None = _MCP_CONFIG,
    disable_mcp: bool = _DISABLE_MCP,
    config_file: str | None = _CONFIG,
    verbose: bool = _VERBOSE,
) -> None:
    """Run a single task and exit."""
    config = _load_config(
        config_file, model, api_base, session_dir, max_loops, max_tokens,
        mcp_config, disable_mcp,
    )
    setup_logging(verbose, config.log_file)
    if not asyncio.run(_run_once(config, task)):
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
