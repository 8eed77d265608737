"""Map a doctor's provider identity to its adapter class."""

from consult.models import Doctor
from consult.providers.anthropic import AnthropicProvider
from consult.providers.base import AIProvider, ProviderError
from consult.providers.gemini import GeminiProvider
from consult.providers.openai_provider import OpenAIProvider

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "deepseek": OpenAIProvider,
    "siliconflow": OpenAIProvider,
    "xai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


def build_provider(doctor: Doctor, max_tokens: int = 4096, timeout_sec: float | None = None) -> AIProvider:
    """Instantiate the adapter for one doctor.

    max_tokens caps each reply; timeout_sec, when set, bounds each request.

    Raises:
        ProviderError: Unknown provider or missing API key.
    """
    provider_cls = PROVIDER_CLASSES.get(doctor.provider)
    if provider_cls is None:
        raise ProviderError(doctor.provider, f"Unknown provider for {doctor.name}")
    return provider_cls(doctor, max_tokens=max_tokens, timeout_sec=timeout_sec)
