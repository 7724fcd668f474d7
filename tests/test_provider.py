"""Tests for miniagent.llm.provider (ProviderConfig, LiteLLMProvider, create_provider)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from miniagent.llm.message import Message
from miniagent.llm.provider import (
    LiteLLMProvider,
    ModelCapability,
    ModelError,
    ProviderConfig,
    _extract_content,
    create_provider,
)


def _response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )


# ---------------------------------------------------------------------------
# ProviderConfig / create_provider
# ---------------------------------------------------------------------------


class TestProviderConfig:
    def test_defaults(self) -> None:
        config = ProviderConfig(model="test/model")
        assert config.model == "test/model"
        assert config.temperature is None
        assert config.max_tokens is None
        assert config.api_base is None
        assert config.api_key is None


class TestCreateProvider:
    def test_creates_litellm_provider(self) -> None:
        provider = create_provider(model="openai/gpt-4o")
        assert isinstance(provider, LiteLLMProvider)
        assert provider.config.model == "openai/gpt-4o"

    def test_passes_all_config(self) -> None:
        provider = create_provider(
            model="anthropic/claude-sonnet-4-5-20250929",
            temperature=0.7,
            max_tokens=2048,
            api_base="http://localhost:4000",
            api_key="sk-test",
        )
        assert provider.config.temperature == 0.7
        assert provider.config.max_tokens == 2048
        assert provider.config.api_base == "http://localhost:4000"
        assert provider.config.api_key == "sk-test"

    def test_satisfies_model_capability(self) -> None:
        assert isinstance(create_provider(model="x/y"), ModelCapability)


# ---------------------------------------------------------------------------
# LiteLLMProvider.complete
# ---------------------------------------------------------------------------


class TestComplete:
    async def test_returns_first_choice_text(self) -> None:
        mock_acompletion = AsyncMock(return_value=_response("hello"))
        provider = create_provider(model="test/model")
        with patch("litellm.acompletion", mock_acompletion):
            result = await provider.complete([Message.user("hi")])
        assert result == "hello"
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["model"] == "test/model"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    async def test_unset_options_not_sent(self) -> None:
        mock_acompletion = AsyncMock(return_value=_response("ok"))
        provider = create_provider(model="test/model")
        with patch("litellm.acompletion", mock_acompletion):
            await provider.complete([])
        kwargs = mock_acompletion.call_args.kwargs
        for key in ("temperature", "max_tokens", "api_base", "api_key"):
            assert key not in kwargs

    async def test_options_forwarded(self) -> None:
        mock_acompletion = AsyncMock(return_value=_response("ok"))
        provider = create_provider(
            model="test/model", temperature=0.0, max_tokens=100, api_base="http://gw"
        )
        with patch("litellm.acompletion", mock_acompletion):
            await provider.complete([])
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 100
        assert kwargs["api_base"] == "http://gw"

    async def test_failure_wrapped_as_model_error(self) -> None:
        mock_acompletion = AsyncMock(side_effect=ConnectionError("conn failed"))
        provider = create_provider(model="test/model")
        with patch("litellm.acompletion", mock_acompletion):
            with pytest.raises(ModelError, match="test/model: conn failed"):
                await provider.complete([Message.user("hi")])
        # Never retried
        assert mock_acompletion.call_count == 1


# ---------------------------------------------------------------------------
# _extract_content
# ---------------------------------------------------------------------------


class TestExtractContent:
    def test_text(self) -> None:
        assert _extract_content(_response("answer")) == "answer"

    def test_empty_string_is_valid(self) -> None:
        assert _extract_content(_response("")) == ""

    def test_no_choices(self) -> None:
        with pytest.raises(ModelError, match="No choices"):
            _extract_content(SimpleNamespace(choices=[]))

    def test_none_content(self) -> None:
        with pytest.raises(ModelError, match="no text content"):
            _extract_content(_response(None))
