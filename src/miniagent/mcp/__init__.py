"""MCP tools — proxy tools served by external MCP servers over stdio.

Servers are listed in a JSON file:

    {"servers": [{"name": "fs", "command": "npx", "args": ["..."], "env": {}}]}

Every tool a server lists is registered as ``mcp.<server>.<tool>``.
Sessions live in the caller's ``AsyncExitStack`` and close with it.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from miniagent import __version__
from miniagent.tool.base import ToolCallError
from miniagent.tool.registry import ToolRegistry
from miniagent.tool.truncation import truncate_output

logger = logging.getLogger(__name__)

CLIENT_NAME = "mini-agent"
DEFAULT_INPUT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class McpServerConfig(BaseModel):
    name: str
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class McpConfig(BaseModel):
    servers: list[McpServerConfig] = Field(default_factory=list)


class McpTool:
    """A tool living in an MCP server, called through its session."""

    def __init__(
        self,
        server: str,
        tool_name: str,
        description: str,
        input_schema: dict[str, Any] | None,
        session: Any,
    ) -> None:
        self._server = server
        self._tool_name = tool_name
        self._description = description
        self._schema = input_schema or dict(DEFAULT_INPUT_SCHEMA)
        self._session = session

    @property
    def name(self) -> str:
        return f"mcp.{self._server}.{self._tool_name}"

    @property
    def description(self) -> str:
        return f"[MCP:{self._server}] {self._description}"

    @property
    def json_schema(self) -> dict[str, Any]:
        return self._schema

    async def call(self, args: Any) -> str:
        arguments = args if isinstance(args, dict) else {}
        try:
            result = await self._session.call_tool(self._tool_name, arguments)
        except Exception as e:
            logger.error("MCP call %s failed: %s", self.name, e)
            raise ToolCallError(f"MCP call failed (server: {self._server}): {e}") from e

        text = _result_text(result)
        if result.isError:
            raise ToolCallError(f"MCP tool error: {text}")
        return truncate_output(text)


def _result_text(result: Any) -> str:
    """Joined text blocks, or the whole result as JSON if there are none."""
    texts = [
        block.text
        for block in (result.content or [])
        if getattr(block, "type", None) == "text"
    ]
    if texts:
        return "\n".join(texts)
    return json.dumps(result.model_dump(mode="json"), indent=2)


async def connect_server(server: McpServerConfig, stack: AsyncExitStack) -> Any:
    """Launch ``server`` and return an initialized ``ClientSession``."""
    from mcp import ClientSession, StdioServerParameters
    from mcp.client.stdio import stdio_client
    from mcp.types import Implementation

    params = StdioServerParameters(
        command=server.command,
        args=server.args,
        env={**os.environ, **server.env},
    )
    read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
    session = await stack.enter_async_context(
        ClientSession(
            read_stream,
            write_stream,
            client_info=Implementation(name=CLIENT_NAME, version=__version__),
        )
    )
    await session.initialize()
    return session


def load_mcp_config(config_path: str | Path) -> McpConfig | None:
    """Read the server list. None when the file is absent or invalid."""
    path = Path(config_path)
    if not path.exists():
        logger.info("No MCP config at %s", path)
        return None
    try:
        return McpConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.error("Invalid MCP config %s: %s", path, e)
        return None


async def register_mcp_tools(
    registry: ToolRegistry, config_path: str | Path, stack: AsyncExitStack
) -> int:
    """Connect every configured server and register its tools.

    A server that fails to start or list its tools is logged and
    skipped. Returns the number of tools registered.
    """
    config = load_mcp_config(config_path)
    if config is None:
        return 0

    count = 0
    for server in config.servers:
        server_stack = AsyncExitStack()
        try:
            session = await connect_server(server, server_stack)
            listing = await session.list_tools()
        except Exception as e:
            logger.error("MCP server '%s' failed to start: %s", server.name, e)
            await server_stack.aclose()
            continue
        stack.push_async_callback(server_stack.aclose)

        for info in listing.tools:
            if not info.name:
                continue
            registry.register(
                McpTool(
                    server=server.name,
                    tool_name=info.name,
                    description=info.description or "",
                    input_schema=info.inputSchema,
                    session=session,
                )
            )
            count += 1
        logger.info(
            "MCP server '%s': %d tools registered", server.name, len(listing.tools)
        )
    return count
