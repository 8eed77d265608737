"""OpenAI provider, and OpenAI-compatible APIs (DeepSeek, SiliconFlow, xAI), via the openai SDK."""

import asyncio
import logging
import time

from openai import AsyncOpenAI

from consult.models import Doctor
from consult.providers.base import AIProvider, ProviderError, build_messages

logger = logging.getLogger(__name__)

# Endpoints used when an OpenAI-compatible doctor has no base_url override
DEFAULT_BASE_URLS: dict[str, str] = {
    "deepseek": "https://api.deepseek.com",
    "siliconflow": "https://api.siliconflow.cn/v1",
    "xai": "https://api.x.ai/v1",
}


class OpenAIProvider(AIProvider):
    """OpenAI chat completions, also serving any OpenAI-compatible endpoint."""

    def __init__(self, doctor: Doctor, max_tokens: int = 4096, timeout_sec: float | None = None) -> None:
        self._doctor = doctor
        self._max_tokens = max_tokens
        self._timeout_sec = timeout_sec
        if not doctor.api_key:
            raise ProviderError(doctor.provider, f"Missing API key for {doctor.name}")
        base_url = doctor.base_url or DEFAULT_BASE_URLS.get(doctor.provider)
        self._client = AsyncOpenAI(api_key=doctor.api_key, base_url=base_url or None)

    def name(self) -> str:
        return self._doctor.provider

    def model_string(self) -> str:
        return self._doctor.model

    async def generate(self, prompt: str, history: list[dict[str, str]]) -> str:
        start = time.monotonic()
        request = self._client.chat.completions.create(
            model=self._doctor.model,
            messages=build_messages(prompt, history),
            max_tokens=self._max_tokens,
        )
        try:
            if self._timeout_sec is not None:
                response = await asyncio.wait_for(request, timeout=self._timeout_sec)
            else:
                response = await request
        except TimeoutError as exc:
            raise ProviderError(self.name(), f"Request timed out after {self._timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self.name(), f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self.name(), "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info(
            "%s (%s): %.2fs, %s tokens",
            self._doctor.name,
            self._doctor.model,
            latency,
            token_count,
        )
        return choice.message.content
