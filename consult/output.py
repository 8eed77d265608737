"""Rich console output and markdown file save for consultation results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from consult.models import DOCTOR, ELIMINATED, PATIENT, VOTE_DETAIL, VOTE_RESULT, TranscriptEntry
from consult.store import ConsultState

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

PHASE_LABELS = {
    "setup": "Setup",
    "discussion": "Discussing",
    "voting": "Evaluating",
    "finished": "Finished",
}


def phase_label(phase: str) -> str:
    return PHASE_LABELS.get(phase, phase or "Unknown")


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def print_entry(entry: TranscriptEntry) -> None:
    """Print one finished transcript entry."""
    if entry.type == DOCTOR:
        console.print(Panel(Markdown(entry.content), title=f"[bold]{entry.doctor_name}[/bold]", border_style="cyan"))
    elif entry.type == PATIENT:
        console.print(Panel(entry.content, title=f"[bold]{entry.author}[/bold]", border_style="magenta"))
    elif entry.type == VOTE_DETAIL:
        console.print(Text(f"  vote: {entry.voter_name} -> {entry.target_name}: {entry.reason}", style="yellow"))
    elif entry.type == VOTE_RESULT:
        console.print(Text(entry.content, style="bold yellow"))
    else:
        console.print(Rule(f"[dim]{entry.content}[/dim]"))


def print_final_summary(state: ConsultState) -> None:
    """Print the final summary and the roster outcome."""
    summary = state.final_summary
    console.print(Rule("[bold green]Final Summary[/bold green]"))
    roster = ", ".join(
        f"{d.name} ({'out' if d.status == ELIMINATED else 'in'})" for d in state.doctors
    )
    console.print(
        Text(
            f"Status: {summary.status} | "
            f"Summarizer: {summary.doctor_name or '-'} | "
            f"Rounds: {state.workflow.current_round} | "
            f"Doctors: {roster}",
            style="dim",
        )
    )
    if summary.content:
        console.print(Markdown(summary.content))


def save_to_file(state: ConsultState, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the full consultation as a markdown file.

    Args:
        state: The consultation state, normally finished.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the patient and problem. Useful for inbox mode.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    case = state.patient_case
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    title = state.consultation_name or f"{case.name} {case.current_problem}"
    slug = slug_override if slug_override is not None else _slug(title)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    eliminated = [d.name for d in state.doctors if d.status == ELIMINATED]
    remaining = [d.name for d in state.doctors if d.status != ELIMINATED]

    lines: list[str] = [
        f"# Consultation: {(state.consultation_name or case.name)[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Patient:** {case.name}"
        + (f", {case.gender}" if case.gender else "")
        + (f", {case.age}" if case.age is not None else ""),
        f"**Status:** {phase_label(state.workflow.phase)}",
        f"**Rounds:** {state.workflow.current_round}",
        f"**Remaining:** {', '.join(remaining) or '-'}",
        f"**Eliminated:** {', '.join(eliminated) or '-'}",
        "",
        "---",
        "",
        "## Case",
        "",
        case.current_problem,
        "",
    ]
    if case.past_history:
        lines += ["**Past history:** " + case.past_history, ""]
    if case.image_recognition_result:
        lines += ["**Image findings:**", "", case.image_recognition_result, ""]

    lines += ["## Discussion", ""]
    for entry in state.transcript.visible():
        if entry.type == DOCTOR:
            lines += [f"### {entry.doctor_name}", "", entry.content, ""]
        elif entry.type == PATIENT:
            lines += [f"> **{entry.author}:** {entry.content}", ""]
        elif entry.type == VOTE_DETAIL:
            lines.append(f"- {entry.voter_name} -> {entry.target_name}: {entry.reason}")
        elif entry.type == VOTE_RESULT:
            lines += ["", f"**{entry.content}**", ""]
        else:
            lines += [f"*{entry.content}*", ""]

    summary = state.final_summary
    lines += [
        f"## Final Summary (by {summary.doctor_name or 'nobody'}, {summary.status})",
        "",
        summary.content,
        "",
    ]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Consultation saved to: %s", filepath)
    return filepath
