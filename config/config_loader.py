"""Load settings.yaml into typed dataclasses. Reads doctor API keys from the environment."""

import logging
import os
import string
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from consult.models import Doctor
from consult.scheduler import TURN_ORDERS

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

# Placeholders every prompt template may use
TEMPLATE_FIELDS = frozenset({"instructions", "case", "linked", "transcript", "roster", "doctor_id", "doctor_name"})


@dataclass
class ConsultSettings:
    global_system_prompt: str
    summary_prompt: str
    turn_order: str = "random"             # "random" or "custom"
    max_rounds_without_elimination: int = 3
    stream_delay_sec: float = 0.015        # per revealed character
    vote_delay_sec: float = 0.05           # between voters
    tally_delay_sec: float = 0.2           # after the last vote, before the tally


@dataclass
class PromptsConfig:
    discussion: str
    vote: str
    summary: str


@dataclass
class DefaultsConfig:
    output_dir: Path
    health_check_timeout_sec: float = 15.0
    max_tokens: int = 4096
    request_timeout_sec: float | None = None  # None: wait as long as the provider takes


@dataclass
class InboxConfig:
    dir: Path
    archive_dir: Path


@dataclass
class AppConfig:
    settings: ConsultSettings
    prompts: PromptsConfig
    defaults: DefaultsConfig
    inbox: InboxConfig
    doctors: list[Doctor] = field(default_factory=list)


def validate_settings(settings: ConsultSettings) -> None:
    """Raise ValueError for settings the engine cannot run with."""
    if settings.turn_order not in TURN_ORDERS:
        raise ValueError(f"turn_order must be one of {TURN_ORDERS}, got {settings.turn_order!r}")
    if settings.max_rounds_without_elimination < 1:
        raise ValueError(
            f"max_rounds_without_elimination must be >= 1, got {settings.max_rounds_without_elimination}"
        )


def validate_prompts(prompts: PromptsConfig) -> None:
    """Raise ValueError for a template that str.format could not fill.

    Literal braces must be doubled ({{ and }}), and only the names in
    TEMPLATE_FIELDS may be used as placeholders.
    """
    formatter = string.Formatter()
    for kind in ("discussion", "vote", "summary"):
        template = getattr(prompts, kind)
        try:
            parsed = list(formatter.parse(template))
        except ValueError as exc:
            raise ValueError(f"prompts.{kind}: {exc} (use {{{{ and }}}} for literal braces)") from exc
        for _, field_name, _, _ in parsed:
            if field_name is None:
                continue
            if field_name not in TEMPLATE_FIELDS:
                raise ValueError(
                    f"prompts.{kind}: unknown placeholder {{{field_name}}}, "
                    f"expected one of {sorted(TEMPLATE_FIELDS)}"
                )


def _optional_float(value: object) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if the settings file is missing and ValueError
    for invalid consultation settings or prompt templates. A doctor whose
    key variable is unset stays on the roster with an empty api_key
    (simulated voting).
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    consult_raw = raw["consultation"]
    settings = ConsultSettings(
        global_system_prompt=str(consult_raw["global_system_prompt"]),
        summary_prompt=str(consult_raw.get("summary_prompt") or ""),
        turn_order=str(consult_raw.get("turn_order", "random")),
        max_rounds_without_elimination=int(consult_raw.get("max_rounds_without_elimination", 3)),
        stream_delay_sec=float(consult_raw.get("stream_delay_sec", 0.015)),
        vote_delay_sec=float(consult_raw.get("vote_delay_sec", 0.05)),
        tally_delay_sec=float(consult_raw.get("tally_delay_sec", 0.2)),
    )
    validate_settings(settings)

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        discussion=prompts_raw["discussion"],
        vote=prompts_raw["vote"],
        summary=prompts_raw["summary"],
    )
    validate_prompts(prompts)

    defaults_raw = raw.get("defaults", {})
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        health_check_timeout_sec=float(defaults_raw.get("health_check_timeout_sec", 15.0)),
        max_tokens=int(defaults_raw.get("max_tokens", 4096)),
        request_timeout_sec=_optional_float(defaults_raw.get("request_timeout_sec")),
    )

    inbox_raw = raw.get("inbox", {})
    inbox = InboxConfig(
        dir=Path(inbox_raw.get("dir", "./inbox")),
        archive_dir=Path(inbox_raw.get("archive_dir", "./inbox/archive")),
    )

    doctors: list[Doctor] = []
    for doctor_raw in raw.get("doctors", []):
        key_env = doctor_raw.get("api_key_env", "")
        api_key = os.environ.get(key_env, "").strip() if key_env else ""
        doctor = Doctor(
            id=str(doctor_raw["id"]),
            name=str(doctor_raw["name"]),
            provider=str(doctor_raw["provider"]),
            model=str(doctor_raw["model"]),
            api_key=api_key,
            base_url=str(doctor_raw.get("base_url") or ""),
            custom_prompt=str(doctor_raw.get("custom_prompt") or ""),
        )
        doctors.append(doctor)
        if api_key:
            logger.info("Doctor available: %s (%s)", doctor.name, doctor.provider)
        else:
            logger.info(
                "Doctor %s has no API key, votes will be simulated. Set %s in .env",
                doctor.name,
                key_env or "an api_key_env",
            )

    return AppConfig(
        settings=settings,
        prompts=prompts,
        defaults=defaults,
        inbox=inbox,
        doctors=doctors,
    )
