"""Context management — lossy compaction of conversation history.

When the estimated token count of a conversation exceeds its threshold,
everything between the system prompt and the most recent turns is
replaced by a single summary message. The summary is produced by an
ephemeral request to the summarizer model, outside the normal turn
flow. Compaction is irreversible: fidelity is traded for bounded size.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from miniagent.llm.message import Message, Role

if TYPE_CHECKING:
    from miniagent.context import ConversationStore
    from miniagent.llm.provider import ModelCapability

logger = logging.getLogger(__name__)

# Stores this small are never compacted
MIN_MESSAGES_TO_COMPACT = 6

# Most recent messages always kept verbatim
KEEP_RECENT = 4

SUMMARY_LABEL = "Previous conversation summary: "

SUMMARY_PROMPT_TEMPLATE = """\
Summarize the following conversation history into a single paragraph. \
Ignore system messages if any.

{conversation}
"""

PLACEHOLDER_NO_SUMMARIZER = "... Old conversation compressed ..."
PLACEHOLDER_SUMMARY_FAILED = "... Conversation compressed (summary failed) ..."


async def compact_context(
    store: ConversationStore,
    summarizer: ModelCapability | None = None,
) -> bool:
    """Compact old messages into a summary.

    Layout after compaction:
        [system prompt, if any] + [summary] + [last KEEP_RECENT messages]

    Args:
        store: The conversation to compact.
        summarizer: Model used for the summary. Without one, a fixed
            placeholder stands in for the summary.

    Returns:
        True if the store was rewritten, False if it was left alone.
    """
    estimated = store.estimate_tokens()
    if estimated <= store.max_tokens:
        return False

    messages = store.messages
    if len(messages) < MIN_MESSAGES_TO_COMPACT:
        logger.debug("Context too small to compact (%d messages)", len(messages))
        return False

    system_msg = store.system_message
    start = 1 if system_msg is not None else 0
    end = max(len(messages) - KEEP_RECENT, 0)
    if start >= end:
        return False

    old_messages = messages[start:end]
    recent_messages = messages[end:]

    summary = await _summarize(old_messages, summarizer)

    logger.info(
        "Compacted %d messages (~%d tokens) into %d-char summary",
        len(old_messages),
        estimated,
        len(summary),
    )

    # The summary goes in as a user turn: the system slot is reserved
    # for the prompt at index 0.
    rebuilt: list[Message] = []
    if system_msg is not None:
        rebuilt.append(system_msg)
    rebuilt.append(Message.user(f"{SUMMARY_LABEL}{summary}"))
    rebuilt.extend(recent_messages)
    store.messages = rebuilt
    return True


async def _summarize(
    messages: list[Message], summarizer: ModelCapability | None
) -> str:
    if summarizer is None:
        return PLACEHOLDER_NO_SUMMARIZER

    prompt = SUMMARY_PROMPT_TEMPLATE.format(
        conversation=render_messages_for_summary(messages)
    )
    try:
        summary = await summarizer.complete([Message.user(prompt)])
    except Exception as e:
        logger.warning("Compaction summary failed: %s", e)
        return PLACEHOLDER_SUMMARY_FAILED

    if not summary.strip():
        logger.warning("Compaction produced empty summary")
        return PLACEHOLDER_SUMMARY_FAILED
    return summary.strip()


def render_messages_for_summary(
    messages: list[Message], max_chars: int = 50000
) -> str:
    """Render messages as role-labeled lines for the summarizer.

    Truncates individual messages to avoid overwhelming the summarizer.
    """
    lines: list[str] = []
    total_chars = 0

    for msg in messages:
        if total_chars >= max_chars:
            lines.append("[... earlier messages omitted for brevity]")
            break
        if msg.role == Role.SYSTEM:
            continue

        text = msg.content[:2000] if len(msg.content) > 2000 else msg.content
        lines.append(f"[{msg.role.value.upper()}]: {text}")
        total_chars += len(text)

    return "\n".join(lines)
