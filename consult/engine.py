"""Consultation engine: the phase state machine and the interface offered to its host."""

import asyncio
import logging
import random
from collections.abc import Callable, Coroutine
from dataclasses import asdict, fields, replace
from typing import Any

from config.config_loader import ConsultSettings, PromptsConfig, validate_settings
from consult.discussion import run_discussion_round
from consult.errors import ConsultationAbandoned, ConsultStateError, ConsultValidationError
from consult.models import (
    DISCUSSION,
    SETUP,
    SYSTEM,
    Doctor,
    FinalSummary,
    LinkedConsultation,
    PatientCase,
    TranscriptEntry,
    Vote,
)
from consult.pause import PauseGate
from consult.providers.base import AIProvider, ProviderError
from consult.providers.registry import build_provider
from consult.scheduler import generate_turn_queue
from consult.store import ConsultState
from consult.summary import start_final_summary
from consult.termination import check_end_conditions
from consult.transcript import Transcript
from consult.voting import collect_votes, tally_votes

logger = logging.getLogger(__name__)


def _public_doctor(doctor: Doctor) -> dict[str, Any]:
    data = asdict(doctor)
    del data["api_key"]
    return data


def _round_start_message(round_number: int) -> str:
    return f"Round {round_number} of the consultation begins"


class ConsultationEngine:
    """Runs one consultation at a time on the current event loop.

    All steps run one after another: doctors speak in turn-queue order,
    then every active doctor votes, then the tally decides between another
    round and the end. on_change(state) fires after every mutation so a
    host can snapshot the state.
    """

    def __init__(
        self,
        settings: ConsultSettings,
        prompts: PromptsConfig,
        provider_factory: Callable[[Doctor], AIProvider] = build_provider,
        on_change: Callable[[ConsultState], None] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        validate_settings(settings)
        self._initial_settings = replace(settings)
        self.settings = replace(settings)
        self.prompts = prompts
        self.on_change = on_change
        self._provider_factory = provider_factory
        self._rng = rng
        self.state = ConsultState()
        self._gate = PauseGate()
        self._run_task: asyncio.Task | None = None
        self._summary_task: asyncio.Task | None = None

    # --- observables ---

    @property
    def phase(self) -> str:
        return self.state.workflow.phase

    @property
    def current_round(self) -> int:
        return self.state.workflow.current_round

    @property
    def rounds_without_elimination(self) -> int:
        return self.state.workflow.rounds_without_elimination

    @property
    def active_turn(self) -> str | None:
        return self.state.workflow.active_turn

    @property
    def paused(self) -> bool:
        return self.state.workflow.paused

    @property
    def transcript(self) -> Transcript:
        return self.state.transcript

    @property
    def doctors(self) -> list[Doctor]:
        return list(self.state.doctors)

    @property
    def active_doctors(self) -> list[Doctor]:
        return self.state.active_doctors()

    @property
    def last_round_votes(self) -> list[Vote]:
        return list(self.state.last_round_votes)

    @property
    def final_summary(self) -> FinalSummary:
        return self.state.final_summary

    def snapshot(self) -> dict[str, Any]:
        """Plain, JSON-safe copy of the consultation, without typing placeholders or API keys."""
        state = self.state
        return {
            "consultation_name": state.consultation_name,
            "settings": asdict(self.settings),
            "doctors": [_public_doctor(d) for d in state.doctors],
            "patient_case": asdict(state.patient_case),
            "linked_consultations": [asdict(item) for item in state.linked_consultations],
            "workflow": asdict(state.workflow),
            "transcript": [asdict(entry) for entry in state.transcript.visible()],
            "last_round_votes": [asdict(vote) for vote in state.last_round_votes],
            "final_summary": asdict(state.final_summary),
        }

    def changed(self) -> None:
        if self.on_change:
            self.on_change(self.state)

    # --- setup ---

    def set_consultation_name(self, name: str) -> None:
        self.state.consultation_name = (name or "").strip()
        self.changed()

    def update_settings(self, **changes: Any) -> None:
        updated = replace(self.settings, **changes)
        validate_settings(updated)
        self.settings = updated

    def set_patient_case(self, case: PatientCase | None = None, **changes: Any) -> None:
        if case is not None:
            changes = {**{f.name: getattr(case, f.name) for f in fields(case)}, **changes}
        self.state.update_case(**changes)
        self.changed()

    def set_doctors(self, doctors: list[Doctor]) -> None:
        self.state.set_doctors(doctors)
        self.changed()

    def set_linked_consultations(
        self,
        items: list[LinkedConsultation | dict[str, Any]] | None,
        sync_patient_info: bool = True,
    ) -> None:
        self.state.set_linked_consultations(items, sync_patient_info=sync_patient_info)
        self.changed()

    # --- host actions ---

    def start(
        self,
        patient_case: PatientCase | None = None,
        doctors: list[Doctor] | None = None,
        settings: ConsultSettings | None = None,
    ) -> asyncio.Task:
        """Validate, seed round 1 and schedule the round loop on the running event loop.

        Raises:
            ConsultStateError: The consultation is not in setup; reset() first.
            ConsultValidationError: Patient name or current problem is empty, or
                there are no doctors. Nothing is changed in that case.
        """
        if self.phase != SETUP:
            raise ConsultStateError(f"Cannot start a consultation in phase {self.phase!r}; reset it first")

        case = patient_case if patient_case is not None else self.state.patient_case
        roster = doctors if doctors is not None else self.state.doctors
        if not case.name.strip() or not case.current_problem.strip():
            raise ConsultValidationError("Patient name and current problem are required")
        if not roster:
            raise ConsultValidationError("Add at least one doctor before starting the consultation")
        ids = [d.id for d in roster]
        if len(ids) != len(set(ids)):
            raise ConsultValidationError(f"Doctor ids must be unique, got {ids}")
        if settings is not None:
            validate_settings(settings)
            self.settings = replace(settings)

        if patient_case is not None:
            self.set_patient_case(patient_case)
        if doctors is not None:
            self.state.set_doctors(doctors)

        state = self.state
        state.reset_roster()
        state.workflow.phase = DISCUSSION
        state.workflow.current_round = 1
        state.workflow.rounds_without_elimination = 0
        state.workflow.active_turn = None
        state.workflow.paused = False
        self._gate.resume()
        state.last_round_votes = []
        state.final_summary = FinalSummary()
        state.transcript.append(TranscriptEntry(type=SYSTEM, content=_round_start_message(1)))
        state.workflow.turn_queue = generate_turn_queue(state.doctors, self.settings.turn_order, self._rng)
        logger.info(
            "Consultation started: %d doctors, turn order %s, stagnation limit %d",
            len(state.doctors),
            self.settings.turn_order,
            self.settings.max_rounds_without_elimination,
        )
        self.changed()

        self._summary_task = None
        self._run_task = self.spawn(self._run(state))
        return self._run_task

    def submit_supplement(self, text: str) -> TranscriptEntry | None:
        """Add a patient message to the transcript. Blank text is ignored."""
        entry = self.state.add_patient_message(text)
        if entry is not None:
            self.changed()
        return entry

    def pause(self) -> None:
        self._gate.pause()
        self.state.workflow.paused = True
        self.changed()

    def resume(self) -> None:
        self._gate.resume()
        self.state.workflow.paused = False
        self.changed()

    def toggle_pause(self) -> None:
        if self.paused:
            self.resume()
        else:
            self.pause()

    def reset(self) -> None:
        """Return to a fresh setup state.

        In-flight provider calls are not awaited or cancelled; whatever
        they return later is dropped.
        """
        self._gate.resume()
        self._gate = PauseGate()
        self.state = ConsultState()
        self.settings = replace(self._initial_settings)
        self._run_task = None
        self._summary_task = None
        logger.info("Consultation reset")
        self.changed()

    async def wait(self) -> None:
        """Wait for the round loop and then for the final summary, if any."""
        if self._run_task is not None:
            await self._run_task
        if self._summary_task is not None:
            await self._summary_task

    async def run(
        self,
        patient_case: PatientCase | None = None,
        doctors: list[Doctor] | None = None,
        settings: ConsultSettings | None = None,
    ) -> ConsultState:
        """start() and wait() in one call. Returns the final state."""
        self.start(patient_case, doctors, settings)
        state = self.state
        await self.wait()
        return state

    # --- used by the round components ---

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        return asyncio.create_task(self._guarded(coro))

    def ensure_current(self, state: ConsultState) -> None:
        if state is not self.state:
            raise ConsultationAbandoned()

    async def wait_while_paused(self, state: ConsultState) -> None:
        await self._gate.wait()
        self.ensure_current(state)

    async def sleep(self, seconds: float, state: ConsultState) -> None:
        await asyncio.sleep(seconds)
        self.ensure_current(state)

    async def call_provider(self, doctor: Doctor, prompt: str, history: list[dict[str, str]]) -> str:
        """Single call through the provider boundary. No retries; only ProviderError escapes."""
        try:
            provider = self._provider_factory(doctor)
            return await provider.generate(prompt, history)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(doctor.provider, f"Unexpected error: {exc}") from exc

    # --- internals ---

    async def _guarded(self, coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            return await coro
        except ConsultationAbandoned:
            logger.debug("Dropping work from a consultation that was reset")
            return None

    async def _run(self, state: ConsultState) -> None:
        while True:
            self.ensure_current(state)
            await run_discussion_round(self, state)
            await collect_votes(self, state)
            tally_votes(state)
            self.changed()

            decision = check_end_conditions(state, self.settings)
            if decision.finished:
                self._summary_task = start_final_summary(self, decision.summarizer)
                self.changed()
                return

            state.reset_votes()
            state.workflow.current_round += 1
            state.workflow.phase = DISCUSSION
            state.transcript.append(
                TranscriptEntry(type=SYSTEM, content=_round_start_message(state.workflow.current_round))
            )
            state.workflow.turn_queue = generate_turn_queue(state.doctors, self.settings.turn_order, self._rng)
            logger.info("Round %d begins with %d doctors", state.workflow.current_round, len(state.workflow.turn_queue))
            self.changed()
