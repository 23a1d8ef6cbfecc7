"""Generative language model clients (Gemini default, OpenAI optional)."""

import logging
import time
from typing import TYPE_CHECKING, AsyncIterator, Protocol

from portfolio_ai.core.ai_constants import AI_MAX_TOKENS, AI_TEMPERATURE

if TYPE_CHECKING:
    from portfolio_ai.core.config import Settings
    from portfolio_ai.observability import MetricsBackend

logger = logging.getLogger(__name__)


class LanguageModel(Protocol):
    """Turns an assembled prompt into text, in one piece or streamed."""

    name: str

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        ...

    def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        ...


class _ObservedModel:
    name = "base"
    model = ""

    def __init__(self, metrics: "MetricsBackend | None" = None) -> None:
        self._metrics = metrics

    def _observe(self, operation: str, status_code: int, start_time: float) -> None:
        duration_ms = (time.perf_counter() - start_time) * 1000
        if self._metrics is not None:
            self._metrics.observe_external_api(self.name, operation, status_code, duration_ms)
        logger.info(
            "%s API %s model=%s status=%s duration_ms=%.2f",
            self.name,
            operation,
            self.model,
            status_code,
            duration_ms,
        )


class GeminiLanguageModel(_ObservedModel):
    """Google Gemini via ``google-generativeai``."""

    name = "google"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        metrics: "MetricsBackend | None" = None,
    ) -> None:
        super().__init__(metrics)
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        self.model = model
        self._client = genai.GenerativeModel(model)
        self._generation_config = {
            "max_output_tokens": AI_MAX_TOKENS,
            "temperature": AI_TEMPERATURE,
        }

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await self._client.generate_content_async(
                [system_prompt, user_prompt],
                generation_config=self._generation_config,
            )
            status_code = 200
            return response.text
        finally:
            self._observe("generate_content", status_code, start_time)

    async def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await self._client.generate_content_async(
                [system_prompt, user_prompt],
                generation_config=self._generation_config,
                stream=True,
            )
            async for chunk in response:
                if chunk.text:
                    yield chunk.text
            status_code = 200
        finally:
            self._observe("generate_content_stream", status_code, start_time)


class OpenAILanguageModel(_ObservedModel):
    """OpenAI chat completions."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        metrics: "MetricsBackend | None" = None,
    ) -> None:
        super().__init__(metrics)
        from openai import AsyncOpenAI

        self.model = model
        self._client = AsyncOpenAI(api_key=api_key)

    def _messages(self, system_prompt: str, user_prompt: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=self._messages(system_prompt, user_prompt),
                max_tokens=AI_MAX_TOKENS,
                temperature=AI_TEMPERATURE,
            )
            status_code = 200
            return response.choices[0].message.content or ""
        finally:
            self._observe("chat.completions", status_code, start_time)

    async def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=self._messages(system_prompt, user_prompt),
                max_tokens=AI_MAX_TOKENS,
                temperature=AI_TEMPERATURE,
                stream=True,
            )
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
            status_code = 200
        finally:
            self._observe("chat.completions.stream", status_code, start_time)


def create_language_model(
    settings: "Settings",
    metrics: "MetricsBackend | None" = None,
) -> LanguageModel | None:
    """Build the configured model, or None when it has no API key."""
    if settings.llm_provider == "google":
        if not settings.google_ai_api_key:
            return None
        return GeminiLanguageModel(settings.google_ai_api_key, settings.google_chat_model, metrics)
    elif settings.llm_provider == "openai":
        if not settings.openai_api_key:
            return None
        return OpenAILanguageModel(settings.openai_api_key, settings.openai_model, metrics)
    else:
        raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")
