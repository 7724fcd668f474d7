"""Configuration — Pydantic models for miniagent settings."""

from __future__ import annotations

import json
import os
from typing import Any

from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    """LLM provider configuration.

    Model names use litellm's provider-prefix format:
        "anthropic/claude-sonnet-4-5-20250929"
        "openai/gpt-4o"
        "ollama/qwen2.5-coder"

    API keys are read from env vars automatically by litellm
    (ANTHROPIC_API_KEY, OPENAI_API_KEY, ...) unless ``api_key`` is set.
    """

    model: str = Field(default="anthropic/claude-sonnet-4-5-20250929")
    temperature: float | None = Field(default=None)
    max_tokens: int | None = Field(
        default=None, description="Completion token limit passed to the provider"
    )
    api_base: str | None = Field(default=None, description="Custom API endpoint")
    api_key: str | None = Field(default=None)


class AgentSettings(BaseModel):
    """Loop and context limits."""

    max_loops: int = Field(default=50, description="Max iterations per chat turn")
    context_max_tokens: int = Field(
        default=8192, description="Compaction threshold for the session conversation"
    )
    subagent_max_tokens: int = Field(
        default=8192, description="Compaction threshold for sub-agent conversations"
    )
    subagent_max_loops: int = Field(
        default=20, description="Default iteration budget for sub-agents"
    )


class MiniAgentConfig(BaseModel):
    """Top-level miniagent configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    session_dir: str = Field(
        default="__sessions", description="Directory for saved sessions"
    )
    mcp_config: str = Field(
        default="mcp.json", description="MCP server list (missing file is fine)"
    )
    disable_mcp: bool = Field(default=False)
    agents_dir: str = Field(
        default="agents", description="Directory for extra agent kind definitions"
    )
    log_file: str = Field(default="miniagent.log")

    @classmethod
    def load(cls, config_path: str | None = None) -> MiniAgentConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            MINIAGENT_MODEL        - Model name (litellm format with provider prefix)
            MINIAGENT_API_BASE     - Custom API endpoint
            MINIAGENT_MAX_LOOPS    - Max iterations per chat turn
            MINIAGENT_MAX_TOKENS   - Context compaction threshold
            MINIAGENT_SESSION_DIR  - Session storage directory
        """
        from dotenv import load_dotenv

        # .env wins over stale exported values.
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        llm = config_data.get("llm", {})
        agent = config_data.get("agent", {})

        env_model = os.environ.get("MINIAGENT_MODEL")
        if env_model:
            llm["model"] = env_model

        env_api_base = os.environ.get("MINIAGENT_API_BASE")
        if env_api_base:
            llm["api_base"] = env_api_base

        env_max_loops = os.environ.get("MINIAGENT_MAX_LOOPS")
        if env_max_loops:
            agent["max_loops"] = int(env_max_loops)

        env_max_tokens = os.environ.get("MINIAGENT_MAX_TOKENS")
        if env_max_tokens:
            agent["context_max_tokens"] = int(env_max_tokens)

        env_session_dir = os.environ.get("MINIAGENT_SESSION_DIR")
        if env_session_dir:
            config_data["session_dir"] = env_session_dir

        if llm:
            config_data["llm"] = llm
        if agent:
            config_data["agent"] = agent

        return cls.model_validate(config_data)
