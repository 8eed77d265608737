"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import time

from google import genai
from google.genai import types as genai_types

from consult.models import Doctor
from consult.providers.base import AIProvider, ProviderError, build_messages

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, doctor: Doctor, max_tokens: int = 4096, timeout_sec: float | None = None) -> None:
        self._doctor = doctor
        self._max_tokens = max_tokens
        self._timeout_sec = timeout_sec
        if not doctor.api_key:
            raise ProviderError(doctor.provider, f"Missing API key for {doctor.name}")
        if doctor.base_url:
            self._client = genai.Client(
                api_key=doctor.api_key,
                http_options=genai_types.HttpOptions(base_url=doctor.base_url),
            )
        else:
            self._client = genai.Client(api_key=doctor.api_key)

    def name(self) -> str:
        return self._doctor.provider

    def model_string(self) -> str:
        return self._doctor.model

    async def generate(self, prompt: str, history: list[dict[str, str]]) -> str:
        contents = [
            genai_types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[genai_types.Part(text=m["content"])],
            )
            for m in build_messages(prompt, history)
        ]
        start = time.monotonic()
        request = self._client.aio.models.generate_content(
            model=self._doctor.model,
            contents=contents,
            config=genai_types.GenerateContentConfig(
                max_output_tokens=self._max_tokens,
            ),
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

        if not response.text:
            raise ProviderError(self.name(), "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info(
            "%s (%s): %.2fs, %s tokens",
            self._doctor.name,
            self._doctor.model,
            latency,
            token_count,
        )
        return response.text
