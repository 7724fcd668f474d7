"""Model provider abstraction — unified via litellm.

The agent core only needs one capability from a model: given an ordered
list of messages, return the completion text or fail. litellm handles
the provider-specific details (Anthropic, OpenAI, OpenAI-compatible
gateways, etc.) and reads API keys from environment variables.

Failed calls are never retried here; the error is surfaced to the caller
as a ``ModelError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from miniagent.llm.message import Message

logger = logging.getLogger(__name__)


class ModelError(Exception):
    """The model capability failed to produce a completion."""


@dataclass
class ProviderConfig:
    """Configuration for a model provider."""

    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    api_base: str | None = None
    api_key: str | None = None


@runtime_checkable
class ModelCapability(Protocol):
    """Anything that can complete a conversation."""

    async def complete(self, messages: list[Message]) -> str:
        """Return the completion text for ``messages``.

        Raises:
            ModelError: If the completion could not be produced.
        """
        ...


# ---------------------------------------------------------------------------
# litellm provider
# ---------------------------------------------------------------------------


@dataclass
class LiteLLMProvider:
    """Model provider backed by ``litellm.acompletion``.

    litellm detects the provider from the model string prefix
    (e.g. "anthropic/claude-...", "openai/gpt-...").
    """

    _config: ProviderConfig

    @property
    def config(self) -> ProviderConfig:
        return self._config

    async def complete(self, messages: list[Message]) -> str:
        import litellm

        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [m.to_dict() for m in messages],
        }
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base
        if self._config.api_key:
            kwargs["api_key"] = self._config.api_key

        logger.debug(
            "Sending %d messages to %s", len(messages), self._config.model
        )
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.error("Model call to %s failed: %s", self._config.model, e)
            raise ModelError(f"{self._config.model}: {e}") from e

        return _extract_content(response)


def _extract_content(response: Any) -> str:
    """Pull the first choice's text out of a litellm ModelResponse."""
    choices = getattr(response, "choices", None)
    if not choices:
        raise ModelError("No choices in model response")

    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None) if message is not None else None
    if content is None:
        raise ModelError("Model response has no text content")
    return content


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_provider(
    model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_base: str | None = None,
    api_key: str | None = None,
) -> LiteLLMProvider:
    """Create a LiteLLM provider.

    Args:
        model: Model name with provider prefix (e.g. "openai/gpt-4o",
               "anthropic/claude-sonnet-4-5-20250929").
        temperature: Sampling temperature.
        max_tokens: Max output tokens.
        api_base: Override the provider endpoint (OpenAI-compatible gateways).
        api_key: Explicit API key; litellm falls back to env vars when unset.
    """
    config = ProviderConfig(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        api_base=api_base,
        api_key=api_key,
    )
    return LiteLLMProvider(_config=config)
