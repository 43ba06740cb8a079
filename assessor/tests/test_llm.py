"""Tests for the LLM client wrapper (SDK calls are mocked)."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from assessor.llm import DEFAULT_MODELS, LLMCallError, LLMClient, build_client


def _openai_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestBuildClient:
    def test_none_without_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert build_client("openai") is None

    def test_anthropic_with_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.delenv("LLM_MODEL", raising=False)
        client = build_client("anthropic")
        assert client is not None
        assert client.model == DEFAULT_MODELS["anthropic"]

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClient(provider="mystery", api_key="k")


class TestComplete:
    @pytest.mark.asyncio
    async def test_openai_json_mode(self):
        client = LLMClient(provider="openai", api_key="k", model="m")
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=_openai_response(' {"a": 1} '))
        assert await client.complete("sys", "user") == '{"a": 1}'
        kwargs = client._client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.3
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_anthropic_joins_text_blocks(self):
        client = LLMClient(provider="anthropic", api_key="k")
        client._client = MagicMock()
        client._client.messages.create = AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(text='{"a":'), SimpleNamespace(text=" 1}")],
        ))
        assert await client.complete("sys", "user") == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_empty_response(self):
        client = LLMClient(provider="openai", api_key="k")
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=_openai_response(None))
        with pytest.raises(LLMCallError, match="empty"):
            await client.complete("sys", "user")

    @pytest.mark.asyncio
    async def test_sdk_error_wrapped(self):
        client = LLMClient(provider="openai", api_key="k")
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(side_effect=ConnectionError("reset"))
        with pytest.raises(LLMCallError) as exc_info:
            await client.complete("sys", "user")
        assert exc_info.value.retryable is True
