"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        self.reason = message
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI model providers. One instance serves one doctor."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'anthropic')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, history: list[dict[str, str]]) -> str:
        """Generate a reply to prompt, given prior chat turns.

        Args:
            prompt: The full prompt text for this step.
            history: Prior context as {"role": "user"|"assistant", "content": ...} turns.

        Returns:
            The generated text.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...


def build_messages(prompt: str, history: list[dict[str, str]]) -> list[dict[str, str]]:
    """History plus the prompt as a strictly alternating user/assistant list.

    Consecutive turns of one role are merged and a leading assistant turn
    is dropped, since some APIs reject both.
    """
    messages: list[dict[str, str]] = []
    for turn in [*history, {"role": "user", "content": prompt}]:
        role = turn["role"]
        content = turn["content"]
        if not messages and role != "user":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1] = {"role": role, "content": f"{messages[-1]['content']}\n\n{content}"}
        else:
            messages.append({"role": role, "content": content})
    return messages
