"""Final summary: one doctor writes the consolidated answer after the consultation ends."""

import asyncio
import logging
from typing import TYPE_CHECKING

from consult.errors import PromptTemplateError
from consult.models import Doctor, FinalSummary
from consult.prompts import build_summary_prompt, format_history_for_provider
from consult.providers.base import ProviderError
from consult.store import ConsultState

if TYPE_CHECKING:
    from consult.engine import ConsultationEngine

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_PROMPT = (
    "Based on the full consultation, write the final summary in a clinician's voice: core diagnosis, "
    "supporting evidence, differential diagnosis, recommended tests, treatment recommendations, "
    "follow-up plan and risk warnings."
)


def start_final_summary(
    engine: "ConsultationEngine",
    summarizer: Doctor | None,
) -> asyncio.Task | None:
    """Mark the summary pending and schedule its generation.

    The status flips to pending before this returns, so the finished phase
    and the pending summary become visible together. Returns None, and leaves
    the summary idle, when there is no summarizer.
    """
    state = engine.state
    if summarizer is None:
        logger.info("No summarizer available, skipping final summary")
        return None

    used_prompt = engine.settings.summary_prompt or DEFAULT_SUMMARY_PROMPT
    state.final_summary = FinalSummary(
        status="pending",
        doctor_id=summarizer.id,
        doctor_name=summarizer.name,
        content="",
        used_prompt=used_prompt,
    )
    engine.changed()
    return engine.spawn(generate_final_summary(engine, state, summarizer, used_prompt))


async def generate_final_summary(
    engine: "ConsultationEngine",
    state: ConsultState,
    summarizer: Doctor,
    used_prompt: str,
) -> FinalSummary:
    """Call the summarizer and store the outcome as ready or error.

    Provider and template failures end in the error status; nothing is retried.
    """
    logger.info("Running final summary via %s", summarizer.name)
    try:
        prompt = build_summary_prompt(
            engine.prompts,
            used_prompt,
            state.patient_case,
            state.transcript,
            summarizer.id,
            state.linked_consultations,
            state.doctors,
        )
        history = format_history_for_provider(state.transcript, state.patient_case, summarizer.id)
        content = await engine.call_provider(summarizer, prompt, history)
    except (ProviderError, PromptTemplateError) as exc:
        engine.ensure_current(state)
        logger.warning("Final summary by %s failed: %s", summarizer.name, exc)
        state.final_summary = FinalSummary(
            status="error",
            doctor_id=summarizer.id,
            doctor_name=summarizer.name,
            content=f"Failed to generate the summary: {exc}",
            used_prompt=used_prompt,
        )
    else:
        engine.ensure_current(state)
        state.final_summary = FinalSummary(
            status="ready",
            doctor_id=summarizer.id,
            doctor_name=summarizer.name,
            content=content,
            used_prompt=used_prompt,
        )
        logger.info("Final summary ready (%d chars)", len(content))

    engine.changed()
    return state.final_summary
