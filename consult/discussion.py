"""Discussion driver: one sequential pass over the turn queue."""

import logging
from typing import TYPE_CHECKING

from consult.errors import PromptTemplateError
from consult.models import ACTIVE, DOCTOR, SYSTEM, VOTING, Doctor, TranscriptEntry
from consult.prompts import build_discussion_prompt, format_history_for_provider
from consult.providers.base import ProviderError
from consult.store import ConsultState

if TYPE_CHECKING:
    from consult.engine import ConsultationEngine

logger = logging.getLogger(__name__)

ROUND_END_MESSAGE = "Discussion for this round has ended; the doctors are evaluating the answers..."


async def take_turn(engine: "ConsultationEngine", state: ConsultState, doctor: Doctor) -> None:
    """Let one doctor speak: placeholder, provider call, then a streamed reveal.

    A provider failure becomes a doctor entry carrying the reason. Either
    way the placeholder is gone and active_turn is cleared afterwards.
    """
    state.workflow.active_turn = doctor.id
    typing = state.transcript.append(
        TranscriptEntry(type=SYSTEM, content=f"{doctor.name} is typing...", transient=True)
    )
    engine.changed()

    instructions = doctor.custom_prompt or engine.settings.global_system_prompt
    try:
        prompt = build_discussion_prompt(
            engine.prompts,
            instructions,
            state.patient_case,
            state.transcript,
            doctor.id,
            state.linked_consultations,
            state.doctors,
        )
        history = format_history_for_provider(state.transcript, state.patient_case, doctor.id)
        text = await engine.call_provider(doctor, prompt, history)
    except (ProviderError, PromptTemplateError) as exc:
        engine.ensure_current(state)
        logger.warning("Doctor %s failed in round %d: %s", doctor.name, state.workflow.current_round, exc)
        state.transcript.remove_transient(typing)
        state.transcript.append(
            TranscriptEntry(
                type=DOCTOR,
                doctor_id=doctor.id,
                doctor_name=doctor.name,
                content=f"Call to {doctor.name} failed: {exc}",
            )
        )
        state.workflow.active_turn = None
        engine.changed()
        return

    engine.ensure_current(state)
    state.transcript.remove_transient(typing)
    message = state.transcript.append(
        TranscriptEntry(type=DOCTOR, doctor_id=doctor.id, doctor_name=doctor.name, content="")
    )
    engine.changed()

    for char in text:
        await engine.wait_while_paused(state)
        state.transcript.reveal(message, char)
        engine.changed()
        await engine.sleep(engine.settings.stream_delay_sec, state)

    state.workflow.active_turn = None
    engine.changed()


async def run_discussion_round(engine: "ConsultationEngine", state: ConsultState) -> None:
    """Walk the current turn queue strictly in order, then hand the round to voting."""
    round_number = state.workflow.current_round
    logger.info("Round %d discussion: %d doctors scheduled", round_number, len(state.workflow.turn_queue))

    for doctor_id in list(state.workflow.turn_queue):
        doctor = state.find_doctor(doctor_id)
        if doctor is None or doctor.status != ACTIVE:
            continue
        await engine.wait_while_paused(state)
        await take_turn(engine, state, doctor)

    state.workflow.phase = VOTING
    state.transcript.append(TranscriptEntry(type=SYSTEM, content=ROUND_END_MESSAGE))
    engine.changed()
