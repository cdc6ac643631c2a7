from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ad_shipper.config import settings


class LLMClientConfigError(Exception):
    pass


logger = logging.getLogger(__name__)
_DEFAULT_TIMEOUT = float(os.getenv("LLM_REQUEST_TIMEOUT", "120"))
_MAX_RETRIES = int(os.getenv("LLM_REQUEST_RETRIES", "2"))


@dataclass
class LLMGenerationParams:
    model: str
    max_tokens: Optional[int] = None
    temperature: float = 0.2


class LLMClient:
    """
    Async completion client used by the copy agents.
    Routes to Anthropic for `claude*` models and to OpenAI for `gpt-*` / `o*` models.
    """

    def __init__(self, default_model: Optional[str] = None, *, max_tokens: Optional[int] = None) -> None:
        self.default_model = default_model or settings.COPY_MODEL
        self.max_tokens = max_tokens or settings.COPY_MAX_TOKENS
        self._anthropic_client: Optional[AsyncAnthropic] = None
        self._openai_client: Optional[AsyncOpenAI] = None

    @classmethod
    def from_settings(cls) -> "LLMClient":
        return cls(default_model=settings.COPY_MODEL, max_tokens=settings.COPY_MAX_TOKENS)

    async def complete(
        self,
        system: str,
        user_message: str,
        params: Optional[LLMGenerationParams] = None,
    ) -> str:
        model = params.model if params and params.model else self.default_model
        if self._is_openai_model(model):
            return await self._complete_with_openai(system, user_message, model, params)
        if model.startswith("claude"):
            return await self._complete_with_anthropic(system, user_message, model, params)
        raise LLMClientConfigError(f"Unsupported copy model: {model}")

    def _is_openai_model(self, model: str) -> bool:
        lower = model.lower()
        prefixes = ("gpt-", "chatgpt-", "o", "omni-")
        return any(lower.startswith(prefix) for prefix in prefixes)

    async def _complete_with_anthropic(
        self,
        system: str,
        user_message: str,
        model: str,
        params: Optional[LLMGenerationParams],
    ) -> str:
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise LLMClientConfigError("ANTHROPIC_API_KEY not configured")

        if not self._anthropic_client:
            self._anthropic_client = AsyncAnthropic(
                api_key=api_key,
                timeout=_DEFAULT_TIMEOUT,
                max_retries=_MAX_RETRIES,
            )

        max_tokens = params.max_tokens if params and params.max_tokens else self.max_tokens
        temperature = params.temperature if params else 0.2
        response = await self._anthropic_client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": user_message}],
        )
        text_parts = [content.text for content in response.content if getattr(content, "text", None)]
        return "".join(text_parts)

    async def _complete_with_openai(
        self,
        system: str,
        user_message: str,
        model: str,
        params: Optional[LLMGenerationParams],
    ) -> str:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise LLMClientConfigError("OPENAI_API_KEY not configured")

        if not self._openai_client:
            client_kwargs: dict[str, Any] = {
                "api_key": api_key,
                "timeout": _DEFAULT_TIMEOUT,
                "max_retries": _MAX_RETRIES,
            }
            base_url = os.getenv("OPENAI_BASE_URL")
            if base_url:
                client_kwargs["base_url"] = base_url
            self._openai_client = AsyncOpenAI(**client_kwargs)

        max_tokens = params.max_tokens if params and params.max_tokens else self.max_tokens
        response = await self._openai_client.chat.completions.create(
            model=model,
            max_completion_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user_message},
            ],
        )
        if not response.choices:
            logger.warning("llm.openai_empty_choices", extra={"model": model})
            return ""
        return response.choices[0].message.content or ""
