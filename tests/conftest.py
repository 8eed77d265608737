"""Shared pytest fixtures."""

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from config.config_loader import ConsultSettings, PromptsConfig
from consult.engine import ConsultationEngine
from consult.models import Doctor, PatientCase
from consult.providers.base import AIProvider

VOTE_MARKER = "CAST YOUR VOTE"
SUMMARY_MARKER = "WRITE THE FINAL SUMMARY"


@pytest.fixture
def sample_settings() -> ConsultSettings:
    return ConsultSettings(
        global_system_prompt="You are a careful clinician.",
        summary_prompt="Summarize the consultation.",
        turn_order="custom",
        max_rounds_without_elimination=3,
        stream_delay_sec=0,
        vote_delay_sec=0,
        tally_delay_sec=0,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        discussion="{instructions}\n{case}\n{linked}\nSo far:\n{transcript}\nYou are {doctor_name}. Speak.",
        vote=(
            "{instructions}\n{case}\n{linked}\nSo far:\n{transcript}\n"
            "Roster:\n{roster}\n" + VOTE_MARKER + " as {doctor_id}: "
            '{{"targetDoctorId": "<id>", "reason": "<why>"}}'
        ),
        summary="{instructions}\n{case}\n{linked}\n{transcript}\n" + SUMMARY_MARKER + " as {doctor_name}.",
    )


@pytest.fixture
def sample_case() -> PatientCase:
    return PatientCase(
        name="Jane Doe",
        gender="female",
        age=54,
        past_history="Hypertension for 10 years.",
        current_problem="Chest tightness on exertion for two weeks.",
    )


def make_doctor(doctor_id: str, api_key: str = "sk-test", **kwargs) -> Doctor:
    return Doctor(
        id=doctor_id,
        name=f"Dr. {doctor_id.upper()}",
        provider="openai",
        model="mock-model",
        api_key=api_key,
        **kwargs,
    )


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(return_value=response_content)  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, prompt: str, history: list[dict[str, str]]) -> str:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return self._response_content


def scripted_provider(
    speech: str,
    vote_target: str | None = None,
    summary: str = "Final answer.",
    vote_reply: str | None = None,
) -> MockProvider:
    """MockProvider that answers discussion, vote and summary prompts differently."""
    provider = MockProvider("mock", speech)

    async def reply(prompt: str, history: list[dict[str, str]]) -> str:
        if VOTE_MARKER in prompt:
            if vote_reply is not None:
                return vote_reply
            return f'{{"targetDoctorId": "{vote_target}", "reason": "Weakest reasoning."}}'
        if SUMMARY_MARKER in prompt:
            return summary
        return speech

    provider.generate = AsyncMock(side_effect=reply)
    return provider


def factory_for(providers: dict[str, AIProvider]) -> Callable[[Doctor], AIProvider]:
    """Provider factory that hands each doctor its prepared test double."""
    return lambda doctor: providers[doctor.id]


@pytest.fixture
def make_engine(sample_settings, sample_prompts_config):
    def _make(providers: dict[str, AIProvider], **kwargs) -> ConsultationEngine:
        return ConsultationEngine(
            sample_settings,
            sample_prompts_config,
            provider_factory=factory_for(providers),
            **kwargs,
        )

    return _make
