"""Prompt construction: case, transcript and roster rendered into provider prompts."""

from config.config_loader import PromptsConfig
from consult.models import (
    DOCTOR,
    PATIENT,
    SYSTEM,
    VOTE_DETAIL,
    VOTE_RESULT,
    Doctor,
    LinkedConsultation,
    PatientCase,
)
from consult.errors import PromptTemplateError
from consult.transcript import Transcript


def format_case(case: PatientCase) -> str:
    lines = ["## Patient case", f"Name: {case.name}"]
    if case.gender:
        lines.append(f"Gender: {case.gender}")
    if case.age is not None:
        lines.append(f"Age: {case.age}")
    if case.past_history:
        lines.append(f"Past history: {case.past_history}")
    lines.append(f"Current problem: {case.current_problem}")
    if case.image_recognition_result:
        lines.append(f"Image findings:\n{case.image_recognition_result}")
    return "\n".join(lines)


def format_linked(linked: list[LinkedConsultation]) -> str:
    if not linked:
        return ""
    parts = ["## Linked earlier consultations"]
    for item in linked:
        block = [f"### {item.consultation_name}"]
        if item.finished_at:
            block.append(f"Finished: {item.finished_at}")
        if item.current_problem:
            block.append(f"Problem: {item.current_problem}")
        if item.past_history:
            block.append(f"Past history: {item.past_history}")
        if item.image_recognition_result:
            block.append(f"Image findings: {item.image_recognition_result}")
        if item.final_summary:
            block.append(f"Final answer: {item.final_summary}")
        parts.append("\n".join(block))
    return "\n\n".join(parts) + "\n"


def format_transcript(transcript: Transcript, doctor_id: str | None = None) -> str:
    """Render visible entries as text; the reader's own turns are marked "(you)"."""
    lines: list[str] = []
    for entry in transcript.visible():
        if entry.type == DOCTOR:
            you = " (you)" if doctor_id is not None and entry.doctor_id == doctor_id else ""
            lines.append(f"**{entry.doctor_name}{you}**: {entry.content}")
        elif entry.type == PATIENT:
            lines.append(f"**{entry.author}**: {entry.content}")
        elif entry.type == VOTE_DETAIL:
            lines.append(f"[vote] {entry.voter_name} -> {entry.target_name}: {entry.reason}")
        elif entry.type in (SYSTEM, VOTE_RESULT):
            lines.append(f"[{entry.content}]")
    return "\n".join(lines) if lines else "(no discussion yet)"


def format_roster(doctors: list[Doctor]) -> str:
    return "\n".join(f"- {d.name} (id: {d.id})" for d in doctors)


def _render(kind: str, template: str, **fields: str) -> str:
    try:
        return template.format(**fields)
    except (KeyError, IndexError, ValueError, AttributeError) as exc:
        raise PromptTemplateError(f"Cannot fill the {kind} prompt template: {exc!r}") from exc


def _name_of(doctor_id: str | None, doctors: list[Doctor] | None) -> str:
    for doctor in doctors or []:
        if doctor.id == doctor_id:
            return doctor.name
    return doctor_id or ""


def build_discussion_prompt(
    templates: PromptsConfig,
    instructions: str,
    case: PatientCase,
    transcript: Transcript,
    doctor_id: str,
    linked: list[LinkedConsultation],
    doctors: list[Doctor] | None = None,
) -> str:
    return _render(
        "discussion",
        templates.discussion,
        instructions=instructions,
        case=format_case(case),
        linked=format_linked(linked),
        transcript=format_transcript(transcript, doctor_id),
        roster=format_roster(doctors or []),
        doctor_id=doctor_id,
        doctor_name=_name_of(doctor_id, doctors),
    )


def build_vote_prompt(
    templates: PromptsConfig,
    instructions: str,
    case: PatientCase,
    transcript: Transcript,
    active_doctors: list[Doctor],
    voter: Doctor,
    linked: list[LinkedConsultation],
) -> str:
    return _render(
        "vote",
        templates.vote,
        instructions=instructions,
        case=format_case(case),
        linked=format_linked(linked),
        transcript=format_transcript(transcript, voter.id),
        roster=format_roster(active_doctors),
        doctor_id=voter.id,
        doctor_name=voter.name,
    )


def build_summary_prompt(
    templates: PromptsConfig,
    instructions: str,
    case: PatientCase,
    transcript: Transcript,
    summarizer_id: str,
    linked: list[LinkedConsultation],
    doctors: list[Doctor] | None = None,
) -> str:
    return _render(
        "summary",
        templates.summary,
        instructions=instructions,
        case=format_case(case),
        linked=format_linked(linked),
        transcript=format_transcript(transcript, summarizer_id),
        roster=format_roster(doctors or []),
        doctor_id=summarizer_id,
        doctor_name=_name_of(summarizer_id, doctors),
    )


def format_history_for_provider(
    transcript: Transcript,
    case: PatientCase,
    doctor_id: str,
) -> list[dict[str, str]]:
    """Chat-style prior context for one doctor.

    The case opens as a user turn, the doctor's own statements become
    assistant turns and everything said by others becomes user turns.
    System narration and votes are left to the prompt text.
    """
    history = [{"role": "user", "content": format_case(case)}]
    for entry in transcript.visible():
        if entry.type == DOCTOR and entry.content:
            if entry.doctor_id == doctor_id:
                history.append({"role": "assistant", "content": entry.content})
            else:
                history.append({"role": "user", "content": f"{entry.doctor_name}: {entry.content}"})
        elif entry.type == PATIENT:
            history.append({"role": "user", "content": f"{entry.author}: {entry.content}"})
    return history
