"""Voting and elimination: one vote per active doctor, then a tally."""

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from consult.errors import PromptTemplateError
from consult.models import VOTE_DETAIL, VOTE_RESULT, Doctor, TranscriptEntry, Vote
from consult.prompts import build_vote_prompt, format_history_for_provider
from consult.providers.base import ProviderError
from consult.store import ConsultState

if TYPE_CHECKING:
    from consult.engine import ConsultationEngine

logger = logging.getLogger(__name__)

SIMULATED_REASON = "Simulated mode: marks its own answer as needing further support."
PARSED_DEFAULT_REASON = "Judgement made after weighing the discussion."
UNRESOLVED_REASON = "Vote could not be resolved; defaulting to self."


@dataclass
class TallyResult:
    eliminated: Doctor | None
    message: str


def parse_vote_response(text: str | None) -> dict[str, Any] | None:
    """Pull the JSON object out of a vote reply.

    Takes the span from the first "{" to the last "}". If that is not valid
    JSON, retries once with single quotes swapped for double quotes.
    Returns None when nothing usable is found.
    """
    if not text or not isinstance(text, str):
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    candidate = text[start:end + 1]
    for body in (candidate, candidate.replace("'", '"')):
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            continue
        return parsed if isinstance(parsed, dict) else None
    return None


async def _request_vote(
    engine: "ConsultationEngine",
    state: ConsultState,
    voter: Doctor,
    active: list[Doctor],
) -> tuple[str | None, str]:
    """Ask one doctor for a vote. Returns (target_id, reason); target_id is None when unresolved."""
    if not voter.api_key:
        return voter.id, SIMULATED_REASON

    instructions = voter.custom_prompt or engine.settings.global_system_prompt
    try:
        prompt = build_vote_prompt(
            engine.prompts,
            instructions,
            state.patient_case,
            state.transcript,
            active,
            voter,
            state.linked_consultations,
        )
        history = format_history_for_provider(state.transcript, state.patient_case, voter.id)
        reply = await engine.call_provider(voter, prompt, history)
    except (ProviderError, PromptTemplateError) as exc:
        engine.ensure_current(state)
        logger.warning("Vote from %s failed: %s", voter.name, exc)
        return None, ""
    engine.ensure_current(state)

    parsed = parse_vote_response(reply)
    if parsed is None or not isinstance(parsed.get("targetDoctorId"), str):
        logger.warning("Vote from %s could not be parsed: %.200r", voter.name, reply)
        return None, ""
    reason = str(parsed.get("reason") or "").strip() or PARSED_DEFAULT_REASON
    logger.debug("Parsed vote from %s: %s", voter.name, parsed)
    return parsed["targetDoctorId"], reason


def record_vote(state: ConsultState, voter: Doctor, target: Doctor, reason: str) -> Vote:
    vote = Vote(
        round=state.workflow.current_round,
        voter_id=voter.id,
        voter_name=voter.name,
        target_id=target.id,
        target_name=target.name,
        reason=reason,
    )
    state.last_round_votes.append(vote)
    state.transcript.append(
        TranscriptEntry(
            type=VOTE_DETAIL,
            voter_id=voter.id,
            voter_name=voter.name,
            target_id=target.id,
            target_name=target.name,
            reason=reason,
        )
    )
    state.add_vote(target.id)
    return vote


async def collect_votes(engine: "ConsultationEngine", state: ConsultState) -> list[Vote]:
    """Every active doctor votes once, in roster order.

    Anything that does not name an active doctor (no reply, bad JSON,
    unknown id) becomes a self-vote.
    """
    state.reset_votes()
    state.last_round_votes = []
    engine.changed()

    active = state.active_doctors()
    active_ids = {d.id for d in active}

    for voter in active:
        await engine.wait_while_paused(state)
        target_id, reason = await _request_vote(engine, state, voter, active)
        if target_id not in active_ids:
            if target_id is not None:
                logger.warning("Vote from %s names inactive doctor %r", voter.name, target_id)
            target_id = voter.id
            reason = reason or UNRESOLVED_REASON

        target = state.find_doctor(target_id)
        record_vote(state, voter, target, reason)
        engine.changed()
        await engine.sleep(engine.settings.vote_delay_sec, state)

    await engine.sleep(engine.settings.tally_delay_sec, state)
    return list(state.last_round_votes)


def tally_votes(state: ConsultState) -> TallyResult:
    """Eliminate the single doctor holding the most votes, if there is one.

    A tie for the maximum, or no votes at all, eliminates nobody and bumps
    the stagnation counter. A vote_result entry narrates the outcome.
    """
    active = state.active_doctors()
    max_votes = max([0, *(d.votes for d in active)])
    top = [d for d in active if d.votes == max_votes]

    if len(top) != 1 or max_votes == 0:
        state.workflow.rounds_without_elimination += 1
        result = TallyResult(
            eliminated=None,
            message="Evaluation finished: opinions were split, nobody was marked as less accurate this round.",
        )
        logger.info(
            "Round %d: no elimination (%d rounds without elimination)",
            state.workflow.current_round,
            state.workflow.rounds_without_elimination,
        )
    else:
        target = top[0]
        state.eliminate(target.id)
        state.workflow.rounds_without_elimination = 0
        result = TallyResult(
            eliminated=target,
            message=(
                f"Evaluation finished: {target.name} was marked as less accurate "
                "and sits out the rest of the discussion."
            ),
        )

    state.transcript.append(TranscriptEntry(type=VOTE_RESULT, content=result.message))
    return result
