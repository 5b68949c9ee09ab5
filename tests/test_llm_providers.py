"""Tests for the OpenAI adapter used by notification triage."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from config.settings import config
from utils.llm_providers import OpenAIProvider, get_llm_provider


def _completion(text):
    choice = MagicMock()
    choice.message.content = text
    response = MagicMock()
    response.choices = [choice]
    return response


def _provider(text):
    provider = OpenAIProvider(api_key="sk-test", default_model="gpt-4o-mini")
    provider.client = MagicMock()
    provider.client.chat.completions.create = AsyncMock(return_value=_completion(text))
    return provider


def test_no_key_means_no_provider():
    assert config.openai_api_key is None
    assert get_llm_provider() is None


def test_provider_is_cached_per_model():
    first = get_llm_provider(api_key="sk-test", default_model="triage-model")
    assert isinstance(first, OpenAIProvider)
    assert get_llm_provider(api_key="sk-test", default_model="triage-model") is first


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_schema_requests_json_mode(self):
        provider = _provider(json.dumps({"urgency": "High"}))
        result = await provider.generate("classify", output_schema={"urgency": "string"}, max_tokens=50)

        assert result == {"urgency": "High"}
        kwargs = provider.client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 50
        assert "Respond ONLY with valid JSON" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_invalid_json_returned_raw(self):
        provider = _provider("not json")
        assert await provider.generate("classify", output_schema={}) == {"raw": "not json"}

    @pytest.mark.asyncio
    async def test_plain_text_without_schema(self):
        provider = _provider("hello")
        assert await provider.generate("say hi") == "hello"
        kwargs = provider.client.chat.completions.create.await_args.kwargs
        assert "response_format" not in kwargs
