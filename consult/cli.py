"""Click CLI: loads config and a case, runs the consultation, prints and saves the result."""

import asyncio
import functools
import logging
import sys
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, ConsultSettings, load_config
from consult.case_file import archive_file, ensure_dirs, parse_case_file, scan_inbox
from consult.engine import ConsultationEngine
from consult.healthcheck import run_health_checks
from consult.models import Doctor, PatientCase
from consult.providers.base import AIProvider
from consult.providers.registry import build_provider
from consult.output import phase_label, print_entry, print_final_summary, save_to_file
from consult.store import ConsultState

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _select_doctors(config: AppConfig, doctors_arg: str | None) -> list[Doctor]:
    """Roster from config, optionally narrowed and reordered by a comma-separated id list."""
    if not doctors_arg:
        return list(config.doctors)
    by_id = {d.id: d for d in config.doctors}
    selected: list[Doctor] = []
    for doctor_id in (part.strip() for part in doctors_arg.split(",")):
        if not doctor_id:
            continue
        if doctor_id not in by_id:
            logger.warning("Doctor '%s' is not configured, skipping", doctor_id)
            continue
        selected.append(by_id[doctor_id])
    return selected


def _effective_settings(
    base: ConsultSettings,
    order: str | None,
    max_stagnant: int | None,
    meta: dict | None = None,
) -> ConsultSettings:
    """CLI flag > case-file frontmatter > config default."""
    meta = meta or {}
    turn_order = order or meta.get("turn_order") or base.turn_order
    if max_stagnant is not None:
        limit = max_stagnant
    elif "max_rounds_without_elimination" in meta:
        limit = int(meta["max_rounds_without_elimination"])
    else:
        limit = base.max_rounds_without_elimination
    return replace(base, turn_order=str(turn_order), max_rounds_without_elimination=limit)


def _provider_factory(config: AppConfig) -> Callable[[Doctor], AIProvider]:
    return functools.partial(
        build_provider,
        max_tokens=config.defaults.max_tokens,
        timeout_sec=config.defaults.request_timeout_sec,
    )


def _check_and_filter_doctors(
    doctors: list[Doctor],
    timeout_sec: float,
    provider_factory: Callable[[Doctor], AIProvider] = build_provider,
) -> list[Doctor]:
    """Run health checks, print results, and ask what to do on failures.

    Doctors without a key are kept (simulated voting). Exits if the user
    declines to continue.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(
        run_health_checks(doctors, provider_factory, timeout_sec=timeout_sec)
    )

    failed_ids: list[str] = []
    for doctor in doctors:
        if doctor.id not in results:
            console.print(f"  [dim]SKIP[/dim] {doctor.name}: no API key")
            continue
        ok, err = results[doctor.id]
        if ok:
            console.print(f"  [green]OK  [/green] {doctor.name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {doctor.name}: {short_err}")
            failed_ids.append(doctor.id)

    if not failed_ids:
        console.print()
        return doctors

    working = [d for d in doctors if d.id not in failed_ids]
    console.print(f"\n[yellow]{len(failed_ids)} doctor(s) failed:[/yellow] {', '.join(failed_ids)}")

    if not working:
        console.print("\n[bold red]Error:[/bold red] No doctors passed the health check.")
        sys.exit(1)

    if not click.confirm("Continue without them?", default=True):
        sys.exit(0)

    console.print()
    return working


async def _run_single(
    case: PatientCase,
    config: AppConfig,
    doctors: list[Doctor],
    settings: ConsultSettings,
    output_dir: Path,
    notes: tuple[str, ...] = (),
    consultation_name: str = "",
    slug_override: str | None = None,
) -> Path:
    """Run one consultation to the end and return the saved output path."""
    console.print(
        f"\n[bold cyan]Consultation[/bold cyan] for {case.name} with {len(doctors)} doctors "
        f"[{settings.turn_order} order, stop after {settings.max_rounds_without_elimination} "
        "rounds without elimination]"
    )
    console.print(f"Doctors: {', '.join(d.name for d in doctors)}")
    problem = case.current_problem
    console.print(f"Problem: [italic]{problem[:80]}{'...' if len(problem) > 80 else ''}[/italic]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task("Starting consultation...", total=None)

        def on_change(state: ConsultState) -> None:
            workflow = state.workflow
            speaker = state.find_doctor(workflow.active_turn)
            detail = f" - {speaker.name} speaking" if speaker else ""
            progress.update(
                task_id,
                description=f"Round {workflow.current_round}: {phase_label(workflow.phase)}{detail}",
            )

        engine = ConsultationEngine(
            config.settings,
            config.prompts,
            provider_factory=_provider_factory(config),
            on_change=on_change,
        )
        engine.set_consultation_name(consultation_name)
        engine.start(case, doctors, settings)
        for note in notes:
            engine.submit_supplement(note)
        state = engine.state
        await engine.wait()

    for entry in state.transcript.visible():
        print_entry(entry)
    print_final_summary(state)

    saved_path = save_to_file(state, output_dir, slug_override=slug_override)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    return saved_path


async def _run_inbox(
    config: AppConfig,
    doctors: list[Doctor],
    inbox_dir: Path,
    archive_dir: Path,
    order_cli: str | None,
    max_stagnant_cli: int | None,
    output_dir: Path,
) -> None:
    """Run a consultation for every case file in the inbox folder."""
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)

    if not files:
        click.echo("No case files in inbox.")
        return

    for file_path in files:
        case, meta = parse_case_file(file_path)
        file_doctors = doctors
        if "doctors" in meta:
            by_id = {d.id: d for d in doctors}
            file_doctors = [by_id[i.strip()] for i in str(meta["doctors"]).split(",") if i.strip() in by_id]

        try:
            saved = await _run_single(
                case=case,
                config=config,
                doctors=file_doctors,
                settings=_effective_settings(config.settings, order_cli, max_stagnant_cli, meta),
                output_dir=output_dir,
                consultation_name=str(meta.get("consultation_name") or ""),
                slug_override=file_path.stem,
            )
            archived = archive_file(file_path, archive_dir)
            click.echo(f"Processed: {file_path.name} -> {saved} (archived: {archived.name})")
        except Exception as e:
            logger.error("Failed: %s -- %s", file_path.name, e)
            archive_file(file_path, archive_dir, failed=True)


@click.command()
@click.argument("case_file", required=False, type=click.Path(exists=True))
@click.option("--name", "patient_name", default=None, help="Patient name (overrides the case file)")
@click.option("--problem", default=None, help="Current problem (overrides the case file body)")
@click.option("--history", "past_history", default=None, help="Past medical history")
@click.option("--doctors", "doctors_arg", default=None, help="Comma-separated doctor ids, in roster order")
@click.option("--order", type=click.Choice(["random", "custom"]), default=None,
              help="Turn order (default: from config)")
@click.option("--max-stagnant", type=int, default=None,
              help="Finish after this many rounds without elimination (default: from config)")
@click.option("--note", "notes", multiple=True, help="Patient supplement added when the consultation starts")
@click.option("--title", default="", help="Consultation name")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--inbox", "use_inbox", is_flag=True, default=False, help="Process all case files in the inbox folder")
@click.option("--inbox-dir", "inbox_dir_override", default=None,
              help="Override inbox folder path (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    case_file: str | None,
    patient_name: str | None,
    problem: str | None,
    past_history: str | None,
    doctors_arg: str | None,
    order: str | None,
    max_stagnant: int | None,
    notes: tuple[str, ...],
    title: str,
    output_path: str | None,
    verbose: bool,
    use_inbox: bool,
    inbox_dir_override: str | None,
    skip_health_check: bool,
) -> None:
    """Doctor Consult -- multi-model medical consultation with elimination voting.

    \b
    Examples:
      doctor-consult case.md
      doctor-consult --name "Jane Doe" --problem "Fever and cough for 5 days"
      doctor-consult case.md --doctors doc-1,doc-2 --order custom
      doctor-consult --inbox
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    doctors = _select_doctors(config, doctors_arg)

    if not doctors:
        console.print("[bold red]Error:[/bold red] No doctors configured. Add doctors in settings.yaml.")
        sys.exit(1)

    if not skip_health_check:
        doctors = _check_and_filter_doctors(
            doctors, config.defaults.health_check_timeout_sec, _provider_factory(config)
        )

    if use_inbox:
        inbox_dir = Path(inbox_dir_override) if inbox_dir_override else config.inbox.dir
        asyncio.run(
            _run_inbox(
                config=config,
                doctors=doctors,
                inbox_dir=inbox_dir,
                archive_dir=config.inbox.archive_dir,
                order_cli=order,
                max_stagnant_cli=max_stagnant,
                output_dir=effective_output,
            )
        )
        return

    meta: dict = {}
    if case_file:
        case, meta = parse_case_file(Path(case_file))
    else:
        case = PatientCase()
    overrides = {
        "name": patient_name,
        "current_problem": problem,
        "past_history": past_history,
    }
    case = replace(case, **{k: v for k, v in overrides.items() if v is not None})

    try:
        asyncio.run(
            _run_single(
                case=case,
                config=config,
                doctors=doctors,
                settings=_effective_settings(config.settings, order, max_stagnant, meta),
                output_dir=effective_output,
                notes=notes,
                consultation_name=title or str(meta.get("consultation_name") or ""),
            )
        )
    except ValueError as exc:
        # incomplete case or roster, or settings rejected by validate_settings
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
