"""Case & participant store: the consultation state and the operations that mutate it."""

import logging
import time
from dataclasses import dataclass, field, fields, replace
from typing import Any

from consult.models import (
    ACTIVE,
    ELIMINATED,
    PATIENT,
    Doctor,
    FinalSummary,
    ImageRecognition,
    LinkedConsultation,
    PatientCase,
    TranscriptEntry,
    Vote,
    Workflow,
)
from consult.transcript import Transcript

logger = logging.getLogger(__name__)

_CASE_FIELDS = {f.name for f in fields(PatientCase)}


def _normalize_status(item: ImageRecognition) -> str:
    if item.status in ("queued", "recognizing"):
        return "queued"
    if item.status in ("error", "success"):
        return item.status
    if item.error:
        return "error"
    if item.result:
        return "success"
    return "queued"


def sanitize_image_recognitions(items: list[ImageRecognition | dict[str, Any]] | None) -> list[ImageRecognition]:
    """Coerce recognition items into ImageRecognition records with a known status.

    In-flight items ("recognizing") come back as "queued": the recognition
    pipeline owns them and re-runs anything that did not finish.
    """
    if not items:
        return []
    now = time.time()
    sanitized: list[ImageRecognition] = []
    for idx, raw in enumerate(items):
        item = raw if isinstance(raw, ImageRecognition) else ImageRecognition(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            result=str(raw.get("result") or ""),
            status=str(raw.get("status") or ""),
            error=str(raw.get("error") or ""),
            created_at=float(raw.get("created_at") or 0.0),
        )
        sanitized.append(
            replace(
                item,
                id=item.id or f"img-{int(now * 1000)}-{idx}",
                status=_normalize_status(item),
                created_at=item.created_at or now,
            )
        )
    return sanitized


def summarize_image_recognitions(items: list[ImageRecognition]) -> str:
    """One line per successful recognition, numbered by position in the full list."""
    lines = []
    for idx, item in enumerate(items, start=1):
        if item.status != "success" or not item.result:
            continue
        name_part = f" ({item.name})" if item.name else ""
        lines.append(f"Image {idx}{name_part}: {item.result}")
    return "\n".join(lines)


def _coerce_age(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def sanitize_linked_consultations(items: list[LinkedConsultation | dict[str, Any]] | None) -> list[LinkedConsultation]:
    if not items:
        return []
    linked: list[LinkedConsultation] = []
    for idx, raw in enumerate(items):
        if not raw:
            continue
        if isinstance(raw, LinkedConsultation):
            linked.append(raw)
            continue
        item_id = raw.get("id") or raw.get("source_id") or f"linked-{idx}"
        linked.append(
            LinkedConsultation(
                id=str(item_id),
                source_id=str(raw.get("source_id") or item_id),
                consultation_name=str(
                    raw.get("consultation_name") or raw.get("name") or f"Linked consultation {idx + 1}"
                ),
                patient_name=str(raw.get("patient_name") or ""),
                patient_gender=str(raw.get("patient_gender") or ""),
                patient_age=_coerce_age(raw.get("patient_age")),
                past_history=str(raw.get("past_history") or ""),
                current_problem=str(raw.get("current_problem") or ""),
                image_recognition_result=str(raw.get("image_recognition_result") or ""),
                final_summary=str(raw.get("final_summary") or ""),
                finished_at=str(raw.get("finished_at") or ""),
            )
        )
    return linked


@dataclass
class ConsultState:
    """Everything one consultation owns. A reset replaces the whole object."""

    consultation_name: str = ""
    doctors: list[Doctor] = field(default_factory=list)
    patient_case: PatientCase = field(default_factory=PatientCase)
    linked_consultations: list[LinkedConsultation] = field(default_factory=list)
    workflow: Workflow = field(default_factory=Workflow)
    transcript: Transcript = field(default_factory=Transcript)
    last_round_votes: list[Vote] = field(default_factory=list)
    final_summary: FinalSummary = field(default_factory=FinalSummary)

    # --- roster ---

    def active_doctors(self) -> list[Doctor]:
        return [d for d in self.doctors if d.status == ACTIVE]

    def find_doctor(self, doctor_id: str | None) -> Doctor | None:
        return next((d for d in self.doctors if d.id == doctor_id), None)

    def set_doctors(self, doctors: list[Doctor]) -> None:
        ids = [d.id for d in doctors]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Doctor ids must be unique, got {ids}")
        # Copies: the roster's status and votes belong to this consultation only.
        self.doctors = [replace(d) for d in doctors]

    def reset_roster(self) -> None:
        for doctor in self.doctors:
            doctor.status = ACTIVE
            doctor.votes = 0

    def reset_votes(self) -> None:
        for doctor in self.doctors:
            doctor.votes = 0

    def add_vote(self, doctor_id: str) -> None:
        doctor = self.find_doctor(doctor_id)
        if doctor is not None:
            doctor.votes += 1

    def eliminate(self, doctor_id: str) -> None:
        doctor = self.find_doctor(doctor_id)
        if doctor is not None and doctor.status == ACTIVE:
            doctor.status = ELIMINATED
            logger.info("Doctor %s eliminated in round %d", doctor.name, self.workflow.current_round)

    # --- case ---

    def update_case(self, **changes: Any) -> None:
        """Merge changes into the patient case.

        Passing image_recognitions rebuilds image_recognition_result from the
        successful items, keeping any existing text when none succeeded.
        """
        unknown = set(changes) - _CASE_FIELDS
        if unknown:
            raise TypeError(f"Unknown patient case fields: {sorted(unknown)}")
        case = replace(self.patient_case, **changes)
        if "image_recognitions" in changes:
            case.image_recognitions = sanitize_image_recognitions(changes["image_recognitions"])
            summary = summarize_image_recognitions(case.image_recognitions)
            if summary:
                case.image_recognition_result = summary
        self.patient_case = case

    def set_linked_consultations(
        self,
        items: list[LinkedConsultation | dict[str, Any]] | None,
        sync_patient_info: bool = True,
    ) -> None:
        self.linked_consultations = sanitize_linked_consultations(items)
        if sync_patient_info and self.linked_consultations:
            first = self.linked_consultations[0]
            self.update_case(
                name=first.patient_name.strip(),
                gender=first.patient_gender.strip(),
                age=first.patient_age,
            )

    # --- transcript ---

    def add_patient_message(self, text: str) -> TranscriptEntry | None:
        content = (text or "").strip()
        if not content:
            return None
        name = self.patient_case.name
        author = f"Patient ({name})" if name else "Patient"
        return self.transcript.append(TranscriptEntry(type=PATIENT, author=author, content=content))
