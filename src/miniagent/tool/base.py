"""Base tool classes with Pydantic parameter validation."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ValidationError

from miniagent.tool.truncation import truncate_output

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ToolCallError(Exception):
    """A tool call failed; the message is shown to the model."""


@runtime_checkable
class Tool(Protocol):
    """The capability the agent loop needs from a tool.

    ``json_schema`` is only ever embedded verbatim in the system prompt;
    nothing in the loop validates against it.
    """

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def json_schema(self) -> dict[str, Any]: ...

    async def call(self, args: Any) -> str:
        """Run the tool.

        Raises:
            ToolCallError: If the call failed.
        """
        ...


@dataclass
class ToolResult:
    """Base result from a tool execution."""

    output: str = ""
    brief: str = ""  # Short description for UI display
    is_error: bool = False


@dataclass
class ToolOk(ToolResult):
    """Successful tool result."""

    is_error: bool = False


@dataclass
class ToolError(ToolResult):
    """Failed tool result."""

    is_error: bool = True


class BaseTool(ABC, Generic[T]):
    """Base class for local tools.

    Each tool declares its parameters as a Pydantic model (the type
    parameter T); the JSON schema shown to the model is derived from it.

    Usage:
        class MyParams(BaseModel):
            path: str
            offset: int = 0

        class MyTool(BaseTool[MyParams]):
            name = "my_tool"
            description = "Does something useful"
            param_model = MyParams

            async def execute(self, params: MyParams) -> ToolResult:
                return ToolOk(output="done")
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    @property
    def json_schema(self) -> dict[str, Any]:
        schema = self.param_model.model_json_schema()
        # Strip the title and $defs that Pydantic adds
        schema.pop("title", None)
        schema.pop("$defs", None)
        return schema

    async def call(self, args: Any) -> str:
        """Validate arguments, execute, truncate output.

        Raises:
            ToolCallError: On invalid arguments, a failed execution, or a
                ``ToolError`` result.
        """
        try:
            params = self.param_model.model_validate(args)
        except ValidationError as e:
            raise ToolCallError(f"Invalid parameters: {e}") from e

        try:
            result = await self.execute(params)  # type: ignore[arg-type]
        except ToolCallError:
            raise
        except Exception as e:
            logger.error("Tool %s execution error: %s", self.name, e, exc_info=True)
            raise ToolCallError(f"Error executing {self.name}: {e}") from e

        output = truncate_output(result.output)
        if result.is_error:
            raise ToolCallError(output)
        return output

    @abstractmethod
    async def execute(self, params: T) -> ToolResult:
        """Execute the tool with validated parameters."""
        ...
