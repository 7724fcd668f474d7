"""Directive parsing — pull structured actions out of model output.

The model drives the loop by embedding one of three tag forms in its
otherwise free-form text:

    <tool_code>{"name": "bash", "args": {"command": "ls"}}</tool_code>
    <parallel>{"task": "...", "type": "code", "max_loops": 5} {...}</parallel>
    <final>answer text</final>

Parsing is total: any input yields a ``ToolCall`` (possibly carrying a
parallel batch), a ``FinalAnswer``, or ``None``. Malformed payloads are
logged and treated as "no directive".
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, StrictStr, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_AGENT_KIND = "dynamic"
DEFAULT_MAX_ITERATIONS = 20

_TOOL_CODE_RE = re.compile(r"<tool_code>\s*(.*?)\s*</tool_code>", re.DOTALL)
_PARALLEL_RE = re.compile(r"<parallel>\s*(.*?)\s*</parallel>", re.DOTALL)
_FINAL_RE = re.compile(r"<final>\s*(.*?)\s*</final>", re.DOTALL)


@dataclass
class SubTaskSpec:
    """One sub-agent to run as part of a parallel batch."""

    task: str
    agent_kind: str = DEFAULT_AGENT_KIND
    max_iterations: int = DEFAULT_MAX_ITERATIONS


@dataclass
class ParallelBatch:
    """Sub-agents to run concurrently."""

    tasks: list[SubTaskSpec] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tasks)


@dataclass
class ToolCall:
    """A request to run one tool.

    ``batch`` is set when the same completion also carried a
    ``<parallel>`` block.
    """

    name: str
    args: Any
    batch: ParallelBatch | None = None


@dataclass
class FinalAnswer:
    """The agent's answer; ends the loop."""

    text: str


Directive = Union[ToolCall, FinalAnswer, None]


class _ToolCodePayload(BaseModel):
    name: StrictStr
    args: Any


def parse_directive(text: str) -> Directive:
    """Extract the directive embedded in a completion.

    Precedence: a ``<tool_code>`` region wins; only without one is a
    ``<final>`` region considered.
    """
    if _TOOL_CODE_RE.search(text):
        call = parse_tool_call(text)
        if call is None:
            return None
        call.batch = parse_parallel_tasks(text)
        return call

    final_text = extract_final(text)
    if final_text is not None:
        return FinalAnswer(text=final_text)
    return None


def parse_tool_call(text: str) -> ToolCall | None:
    """Parse the first ``<tool_code>`` region, or None if absent/malformed."""
    match = _TOOL_CODE_RE.search(text)
    if not match:
        return None

    payload = match.group(1)
    try:
        raw = _ToolCodePayload.model_validate_json(payload)
    except ValidationError as e:
        logger.error(
            "Failed to deserialize tool call JSON: %s (%s)",
            payload[:200],
            e.errors(include_url=False),
        )
        return None

    return ToolCall(name=raw.name, args=raw.args)


def parse_parallel_tasks(text: str) -> ParallelBatch | None:
    """Parse the first ``<parallel>`` region into a batch.

    Objects without a string ``task`` are skipped; ``type`` defaults to
    "dynamic" and ``max_loops`` to 20. Returns None when nothing usable
    is found.
    """
    match = _PARALLEL_RE.search(text)
    if not match:
        return None

    tasks: list[SubTaskSpec] = []
    for chunk in iter_json_objects(match.group(1)):
        try:
            value = json.loads(chunk)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed parallel task: %s", chunk[:200])
            continue
        if not isinstance(value, dict):
            continue

        task = value.get("task")
        if not isinstance(task, str):
            continue

        agent_kind = value.get("type")
        if not isinstance(agent_kind, str):
            agent_kind = DEFAULT_AGENT_KIND

        max_loops = value.get("max_loops")
        if isinstance(max_loops, bool) or not isinstance(max_loops, int) or max_loops < 0:
            max_loops = DEFAULT_MAX_ITERATIONS

        tasks.append(
            SubTaskSpec(task=task, agent_kind=agent_kind, max_iterations=max_loops)
        )

    if not tasks:
        return None
    return ParallelBatch(tasks=tasks)


def extract_final(text: str) -> str | None:
    """Return the trimmed ``<final>`` text, or None if absent or blank."""
    match = _FINAL_RE.search(text)
    if not match:
        return None
    final_text = match.group(1).strip()
    return final_text or None


def iter_json_objects(text: str) -> Iterator[str]:
    """Yield each top-level ``{...}`` substring of ``text``.

    Braces are balanced at any depth, and braces inside JSON strings are
    ignored, so task objects may carry nested object values. An opening
    brace that never closes is treated as prose and scanning resumes
    after it.
    """
    pos = 0
    while True:
        start = text.find("{", pos)
        if start < 0:
            return
        end = _matching_brace(text, start)
        if end is None:
            pos = start + 1
            continue
        yield text[start : end + 1]
        pos = end + 1


def _matching_brace(text: str, start: int) -> int | None:
    """Index of the ``}`` closing the ``{`` at ``start``, if any."""
    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None
