"""Agent kinds — the system prompts sub-agents are primed with.

Five kinds are built in. More can be defined, or built-ins overridden,
as markdown files with YAML frontmatter:

    ---
    name: security
    description: Security review
    ---

    You are a Security SubAgent...
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any

from miniagent.agent.directive import DEFAULT_AGENT_KIND

logger = logging.getLogger(__name__)


@dataclass
class AgentKind:
    """A named sub-agent persona."""

    name: str
    prompt: str
    description: str = ""

    @classmethod
    def from_markdown(cls, path: str) -> AgentKind:
        """Load a kind from a markdown file with YAML frontmatter."""
        with open(path, "r") as f:
            content = f.read()

        meta, body = _parse_frontmatter(content)
        return cls(
            name=str(meta.get("name", "")).strip().lower(),
            prompt=body.strip(),
            description=str(meta.get("description", "")),
        )


BUILTIN_KINDS: tuple[AgentKind, ...] = (
    AgentKind(
        name="code",
        description="Code implementation, refactoring, and optimization",
        prompt=(
            "You are a Code SubAgent focused on code implementation, refactoring, "
            "and optimization.\n"
            "Guidelines:\n"
            "- Write clean, idiomatic code\n"
            "- Follow existing code patterns and conventions\n"
            "- Add comments for complex logic\n"
            "- Consider edge cases and error handling\n"
            "- Run tests to verify your changes\n\n"
            "You have access to bash tool for running commands and testing."
        ),
    ),
    AgentKind(
        name="test",
        description="Writing and improving tests",
        prompt=(
            "You are a Test SubAgent focused on writing and improving tests.\n"
            "Guidelines:\n"
            "- Write comprehensive unit tests\n"
            "- Cover edge cases and error scenarios\n"
            "- Use appropriate testing frameworks\n"
            "- Ensure tests are fast and isolated\n"
            "- Provide clear test documentation\n\n"
            "You have access to bash tool for running tests."
        ),
    ),
    AgentKind(
        name="doc",
        description="Creating and improving documentation",
        prompt=(
            "You are a Documentation SubAgent focused on creating and improving "
            "documentation.\n"
            "Guidelines:\n"
            "- Write clear, concise documentation\n"
            "- Include code examples where appropriate\n"
            "- Document public APIs thoroughly\n"
            "- Keep documentation up-to-date with code changes\n"
            "- Use markdown format for readability\n\n"
            "You have access to bash tool for reading files and checking documentation."
        ),
    ),
    AgentKind(
        name="analysis",
        description="Understanding and analyzing codebases",
        prompt=(
            "You are an Analysis SubAgent focused on understanding and analyzing "
            "codebases.\n"
            "Guidelines:\n"
            "- Analyze code structure and architecture\n"
            "- Identify patterns and anti-patterns\n"
            "- Provide insights on code quality\n"
            "- Suggest improvements where needed\n"
            "- Be thorough in your analysis\n\n"
            "You have access to bash tool for exploring the codebase."
        ),
    ),
    AgentKind(
        name=DEFAULT_AGENT_KIND,
        description="General-purpose sub-agent",
        prompt=(
            "You are a general-purpose SubAgent.\n"
            "Guidelines:\n"
            "- Focus on completing the assigned task\n"
            "- Ask for clarification if needed\n"
            "- Provide clear, actionable results\n"
            "- Report any errors or blockers encountered\n\n"
            "You have access to bash tool for executing commands."
        ),
    ),
)


class AgentKindRegistry:
    """Registry of sub-agent kinds, keyed by lower-cased name.

    Unknown kinds resolve to the general-purpose ``dynamic`` kind.
    """

    def __init__(self, kinds: tuple[AgentKind, ...] | list[AgentKind] = BUILTIN_KINDS) -> None:
        self._kinds: dict[str, AgentKind] = {}
        for kind in kinds:
            self.register(kind)

    def register(self, kind: AgentKind) -> None:
        """Register a kind, replacing any existing one of the same name."""
        self._kinds[kind.name.lower()] = kind

    def get(self, name: str) -> AgentKind | None:
        return self._kinds.get(name.lower())

    def resolve(self, name: str) -> AgentKind:
        """The kind called ``name``, or the default kind."""
        kind = self.get(name)
        if kind is None:
            logger.debug("Unknown agent kind %r, using %s", name, DEFAULT_AGENT_KIND)
            kind = self._kinds[DEFAULT_AGENT_KIND]
        return kind

    def prompt_for(self, name: str) -> str:
        return self.resolve(name).prompt

    def names(self) -> list[str]:
        return sorted(self._kinds)

    def discover(self, search_dirs: list[str]) -> int:
        """Register kinds from ``*.md`` files in ``search_dirs``.

        Files without a ``name`` in their frontmatter, or without a body,
        are skipped. Returns the number of kinds registered.
        """
        found = 0
        for dir_path in search_dirs:
            if not os.path.isdir(dir_path):
                continue
            for fname in sorted(os.listdir(dir_path)):
                if not fname.endswith(".md"):
                    continue
                full_path = os.path.join(dir_path, fname)
                try:
                    kind = AgentKind.from_markdown(full_path)
                except OSError as e:
                    logger.warning("Cannot read agent kind %s: %s", full_path, e)
                    continue
                if not kind.name or not kind.prompt:
                    logger.debug("Skipping %s: no name or prompt", full_path)
                    continue
                self.register(kind)
                found += 1
                logger.info("Discovered agent kind: %s", kind.name)
        return found

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)


def _parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split markdown into (frontmatter dict, body)."""
    import yaml  # only needed when loading kinds from disk

    pattern = re.compile(r"^---\s*\n(.*?)\n---\s*\n(.*)", re.DOTALL)
    match = pattern.match(content)

    if not match:
        return {}, content

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        logger.warning("Invalid agent frontmatter: %s", e)
        meta = {}

    if not isinstance(meta, dict):
        meta = {}
    return meta, match.group(2)
