"""Output bounding — keep tool output from flooding the conversation.

Conversations are compacted by character count, so a single oversized
tool result would force a compaction on the very next iteration. Output
is clipped to a head and a tail with a marker in between; the tail is
usually where errors are.
"""

from __future__ import annotations

import re

MAX_LINES = 400
MAX_CHARS = 16_000

HEAD_SHARE = 0.25

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[a-zA-Z]")


def truncate_output(
    text: str,
    max_lines: int = MAX_LINES,
    max_chars: int = MAX_CHARS,
) -> str:
    """Clip ``text`` to at most ``max_lines`` lines and ``max_chars`` chars.

    Returns the text unchanged when it already fits.
    """
    if not text:
        return text

    lines = text.split("\n")
    if len(lines) <= max_lines and len(text) <= max_chars:
        return text

    if len(lines) > max_lines:
        head_n = max(int(max_lines * HEAD_SHARE), 1)
        tail_n = max_lines - head_n
        skipped = len(lines) - head_n - tail_n
        head = "\n".join(lines[:head_n])
        tail = "\n".join(lines[-tail_n:]) if tail_n else ""
        text = f"{head}\n[... {skipped} lines omitted ...]\n{tail}"

    if len(text) > max_chars:
        head_c = int(max_chars * HEAD_SHARE)
        tail_c = max_chars - head_c
        skipped_chars = len(text) - head_c - tail_c
        text = (
            f"{text[:head_c]}\n[... {skipped_chars} chars omitted ...]\n"
            f"{text[-tail_c:]}"
        )

    return text


def clean_terminal_output(text: str) -> str:
    """Strip ANSI escapes and control characters from command output.

    Tabs and newlines survive; carriage returns are normalized away.
    """
    text = _ANSI_RE.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return "".join(
        ch for ch in text if ch in ("\t", "\n") or (ord(ch) >= 32 and ord(ch) != 0x7F)
    )
