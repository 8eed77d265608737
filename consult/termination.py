"""End-of-round checks: stagnation limit, or one doctor (or none) left."""

import logging
from dataclasses import dataclass

from config.config_loader import ConsultSettings
from consult.models import FINISHED, SYSTEM, Doctor, TranscriptEntry
from consult.store import ConsultState

logger = logging.getLogger(__name__)


@dataclass
class EndDecision:
    finished: bool
    summarizer: Doctor | None = None


def check_end_conditions(state: ConsultState, settings: ConsultSettings) -> EndDecision:
    """Decide, from post-tally state, whether the consultation is over.

    On termination the phase becomes finished and a system entry explains
    why. The stagnation limit wins over the active count.
    """
    active = state.active_doctors()

    if state.workflow.rounds_without_elimination >= settings.max_rounds_without_elimination:
        state.workflow.phase = FINISHED
        state.transcript.append(
            TranscriptEntry(
                type=SYSTEM,
                content="Reached the limit of rounds without elimination; the consultation is over.",
            )
        )
        summarizer = active[0] if active else (state.doctors[0] if state.doctors else None)
        logger.info(
            "Consultation finished after %d rounds without elimination",
            state.workflow.rounds_without_elimination,
        )
        return EndDecision(finished=True, summarizer=summarizer)

    if len(active) <= 1:
        if active:
            summarizer = active[0]
            message = f"Consultation over: {summarizer.name}'s answer is adopted."
        else:
            # A lone doctor can vote itself out; the first roster doctor still summarizes.
            summarizer = state.doctors[0] if state.doctors else None
            message = "Consultation over: no doctor remains."
        state.workflow.phase = FINISHED
        state.transcript.append(TranscriptEntry(type=SYSTEM, content=message))
        logger.info("Consultation finished: %s", message)
        return EndDecision(finished=True, summarizer=summarizer)

    return EndDecision(finished=False)
