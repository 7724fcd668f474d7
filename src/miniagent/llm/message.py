"""Message types for the model abstraction."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class Role(str, enum.Enum):
    """Who authored a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """A single conversation message.

    Content is always plain text: tool output and sub-agent results are
    folded back into the conversation as user-role text.
    """

    role: Role
    content: str = ""

    # --- Convenience constructors ---

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=Role.USER, content=text)

    @classmethod
    def assistant(cls, text: str) -> Message:
        return cls(role=Role.ASSISTANT, content=text)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the ``{"role", "content"}`` wire/storage format."""
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        """Build a message from a ``{"role", "content"}`` dict.

        Raises:
            ValueError: If the role is not one of system/user/assistant.
        """
        role = Role(str(data["role"]).lower())
        return cls(role=role, content=data.get("content") or "")
