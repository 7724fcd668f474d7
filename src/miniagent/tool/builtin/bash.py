"""Bash tool — run a command in a one-shot ``bash -c`` subprocess."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import ClassVar

from pydantic import BaseModel, Field

from miniagent.tool.base import BaseTool, ToolError, ToolOk, ToolResult
from miniagent.tool.truncation import clean_terminal_output

logger = logging.getLogger(__name__)


class BashParams(BaseModel):
    command: str = Field(description="The command to execute")
    timeout: int = Field(default=120, description="Timeout in seconds.")


class BashTool(BaseTool[BashParams]):
    """Execute a bash command and capture its output.

    A non-zero exit is not a tool failure: stderr and stdout are handed
    back to the model as ordinary output so it can react.
    """

    name: ClassVar[str] = "bash"
    description: ClassVar[str] = "Execute a bash command"
    param_model: ClassVar[type[BaseModel]] = BashParams

    def __init__(self, cwd: str | None = None) -> None:
        self._cwd = cwd or os.getcwd()

    async def execute(self, params: BashParams) -> ToolResult:
        if not os.path.isdir(self._cwd):
            return ToolError(output=f"Directory does not exist: {self._cwd}")

        logger.debug("bash: %s", params.command)
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            params.command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._cwd,
            start_new_session=True,  # own process group, so a timeout kills it all
            env={**os.environ, "TERM": "dumb"},
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=params.timeout
            )
        except asyncio.TimeoutError:
            _kill_group(process)
            return ToolError(
                output=f"Command timed out after {params.timeout}s: {params.command}",
                brief=f"Timeout: {params.command[:50]}",
            )
        except asyncio.CancelledError:
            _kill_group(process)
            raise

        out = clean_terminal_output(stdout.decode("utf-8", errors="replace"))
        err = clean_terminal_output(stderr.decode("utf-8", errors="replace"))
        brief = f"exit={process.returncode}: {params.command[:50]}"

        if process.returncode == 0:
            return ToolOk(output=out, brief=brief)
        return ToolOk(output=f"Error: {err}\nStdout: {out}", brief=brief)


def _kill_group(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        pass
