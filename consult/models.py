"""Pure dataclasses for the doctor consultation engine. No logic, no deps."""

from dataclasses import dataclass, field

# Doctor.status
ACTIVE = "active"
ELIMINATED = "eliminated"

# Workflow.phase
SETUP = "setup"
DISCUSSION = "discussion"
VOTING = "voting"
FINISHED = "finished"

# TranscriptEntry.type
SYSTEM = "system"
DOCTOR = "doctor"
PATIENT = "patient"
VOTE_DETAIL = "vote_detail"
VOTE_RESULT = "vote_result"


@dataclass
class Doctor:
    id: str
    name: str
    provider: str          # "openai", "anthropic", "gemini", "deepseek", "siliconflow", "xai"
    model: str
    api_key: str = ""
    base_url: str = ""     # endpoint override, empty means the SDK default
    custom_prompt: str = ""
    status: str = ACTIVE
    votes: int = 0


@dataclass
class ImageRecognition:
    id: str
    name: str = ""
    result: str = ""
    status: str = "queued"  # "queued", "recognizing", "success", "error"
    error: str = ""
    created_at: float = 0.0


@dataclass
class PatientCase:
    name: str = ""
    gender: str = ""
    age: int | None = None
    past_history: str = ""
    current_problem: str = ""
    image_recognition_result: str = ""
    image_recognitions: list[ImageRecognition] = field(default_factory=list)


@dataclass(frozen=True)
class LinkedConsultation:
    id: str
    source_id: str
    consultation_name: str
    patient_name: str = ""
    patient_gender: str = ""
    patient_age: int | None = None
    past_history: str = ""
    current_problem: str = ""
    image_recognition_result: str = ""
    final_summary: str = ""
    finished_at: str = ""


@dataclass
class Workflow:
    phase: str = SETUP
    current_round: int = 0
    rounds_without_elimination: int = 0
    active_turn: str | None = None
    turn_queue: list[str] = field(default_factory=list)
    paused: bool = False


@dataclass
class TranscriptEntry:
    type: str              # "system", "doctor", "patient", "vote_detail", "vote_result"
    content: str = ""
    doctor_id: str | None = None
    doctor_name: str = ""
    author: str = ""       # patient entries only
    voter_id: str | None = None
    voter_name: str = ""
    target_id: str | None = None
    target_name: str = ""
    reason: str = ""
    transient: bool = False  # "is typing" placeholders, removed rather than kept


@dataclass
class Vote:
    round: int
    voter_id: str
    voter_name: str
    target_id: str
    target_name: str
    reason: str


@dataclass
class FinalSummary:
    status: str = "idle"   # "idle", "pending", "ready", "error"
    doctor_id: str | None = None
    doctor_name: str = ""
    content: str = ""
    used_prompt: str = ""
