"""Context — in-memory conversation history with lossy compaction."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from miniagent.llm.message import Message, Role

if TYPE_CHECKING:
    from miniagent.llm.provider import ModelCapability

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8192


@dataclass
class ConversationStore:
    """Ordered message log owned by exactly one agent loop.

    Invariant: at most one system message, and if present it sits at
    index 0. ``inject_system`` is the only way to add one; compaction
    keeps it verbatim.
    """

    max_tokens: int = DEFAULT_MAX_TOKENS
    messages: list[Message] = field(default_factory=list)

    def append(self, message: Message) -> None:
        """Append a message to the end of the log.

        Raises:
            ValueError: If ``message`` is a system message; use
                ``inject_system`` instead.
        """
        if message.role == Role.SYSTEM:
            raise ValueError("System messages must go through inject_system()")
        self.messages.append(message)

    def snapshot(self) -> list[Message]:
        """Get a copy of all messages, in order."""
        return list(self.messages)

    def reset(self) -> None:
        """Drop every message, including the system prompt."""
        self.messages.clear()

    def load(self, messages: list[Message]) -> None:
        """Replace the history (e.g. with a restored session).

        System messages past index 0 (e.g. summaries written by older
        builds) are demoted to user messages so the invariant still holds.
        """
        loaded: list[Message] = []
        for i, msg in enumerate(messages):
            if msg.role == Role.SYSTEM and i != 0:
                logger.debug("Demoting system message at index %d", i)
                msg = Message.user(msg.content)
            loaded.append(msg)
        self.messages = loaded

    def inject_system(self, text: str) -> None:
        """Set the system prompt, replacing the existing one if present."""
        if self.messages and self.messages[0].role == Role.SYSTEM:
            self.messages[0] = Message.system(text)
            return
        self.messages.insert(0, Message.system(text))

    @property
    def system_message(self) -> Message | None:
        if self.messages and self.messages[0].role == Role.SYSTEM:
            return self.messages[0]
        return None

    def estimate_tokens(self) -> int:
        """Rough token estimate based on character count.

        ~4 characters per token is a reasonable approximation.
        """
        return sum(len(m.content) for m in self.messages) // 4

    async def compact(self, summarizer: ModelCapability | None = None) -> bool:
        """Summarize older turns if the estimate exceeds ``max_tokens``.

        Returns True if the history was rewritten.
        """
        from miniagent.context.management import compact_context

        return await compact_context(self, summarizer)

    def __len__(self) -> int:
        return len(self.messages)
