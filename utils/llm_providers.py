"""
Thin adapter over the OpenAI SDK, used to triage Slack notifications.

Callers only depend on ``BaseLLMProvider.generate`` so the SDK stays
behind this module.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from config.settings import config

logger = logging.getLogger(__name__)


class BaseLLMProvider(ABC):
    """Common interface that every concrete provider implements."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        model: str | None = None,
        max_tokens: int = 256,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any] | str:
        ...


class OpenAIProvider(BaseLLMProvider):
    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini"):
        from openai import AsyncOpenAI

        self.client = AsyncOpenAI(api_key=api_key)
        self.default_model = default_model

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        model: str | None = None,
        max_tokens: int = 256,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any] | str:
        model = model or self.default_model

        messages = [{"role": "user", "content": prompt}]
        kwargs: Dict[str, Any] = {}
        if output_schema is not None:
            kwargs["response_format"] = {"type": "json_object"}
            messages[0]["content"] += (
                f"\n\nRespond ONLY with valid JSON matching this schema:\n"
                f"{json.dumps(output_schema, indent=2)}"
            )

        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )

        text = response.choices[0].message.content or ""

        if output_schema is not None:
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                logger.warning("LLM did not return valid JSON; returning raw text")
                return {"raw": text}

        return text


_provider_cache: Dict[str, BaseLLMProvider] = {}


def get_llm_provider(
    *,
    api_key: str | None = None,
    default_model: str | None = None,
) -> Optional[BaseLLMProvider]:
    """
    Return (and cache) the OpenAI provider, or ``None`` when no API key is
    configured.
    """
    key = api_key or config.openai_api_key
    if not key:
        return None

    model = default_model or config.notification_model
    cache_key = f"openai:{model}"
    if cache_key not in _provider_cache:
        _provider_cache[cache_key] = OpenAIProvider(api_key=key, default_model=model)
    return _provider_cache[cache_key]
