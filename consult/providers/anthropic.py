"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import time

import anthropic as anthropic_sdk

from consult.models import Doctor
from consult.providers.base import AIProvider, ProviderError, build_messages

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, doctor: Doctor, max_tokens: int = 4096, timeout_sec: float | None = None) -> None:
        self._doctor = doctor
        self._max_tokens = max_tokens
        self._timeout_sec = timeout_sec
        if not doctor.api_key:
            raise ProviderError(doctor.provider, f"Missing API key for {doctor.name}")
        if doctor.base_url:
            self._client = anthropic_sdk.AsyncAnthropic(api_key=doctor.api_key, base_url=doctor.base_url)
        else:
            self._client = anthropic_sdk.AsyncAnthropic(api_key=doctor.api_key)

    def name(self) -> str:
        return self._doctor.provider

    def model_string(self) -> str:
        return self._doctor.model

    async def generate(self, prompt: str, history: list[dict[str, str]]) -> str:
        start = time.monotonic()
        request = self._client.messages.create(
            model=self._doctor.model,
            max_tokens=self._max_tokens,
            messages=build_messages(prompt, history),
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

        if not response.content:
            raise ProviderError(self.name(), "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self.name(), "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info(
            "%s (%s): %.2fs, %s tokens",
            self._doctor.name,
            self._doctor.model,
            latency,
            token_count,
        )
        return "\n".join(text_blocks)
