"""Provider health checks: ping each doctor's API before starting a consultation."""

import asyncio
import logging
from collections.abc import Callable

from consult.models import Doctor
from consult.providers.base import AIProvider
from consult.providers.registry import build_provider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(
    doctor: Doctor,
    provider_factory: Callable[[Doctor], AIProvider],
    timeout_sec: float,
) -> tuple[str, bool, str]:
    """Ping a single doctor's provider. Returns (doctor_id, ok, error_message)."""
    try:
        provider = provider_factory(doctor)
        await asyncio.wait_for(provider.generate(_PING_PROMPT, []), timeout=timeout_sec)
        return doctor.id, True, ""
    except TimeoutError:
        return doctor.id, False, f"No reply within {timeout_sec}s"
    except Exception as exc:
        return doctor.id, False, str(exc)


async def run_health_checks(
    doctors: list[Doctor],
    provider_factory: Callable[[Doctor], AIProvider] = build_provider,
    timeout_sec: float | None = None,
) -> dict[str, tuple[bool, str]]:
    """Ping every doctor that has an API key, in parallel.

    Doctors without a key run in simulated mode and are not pinged.

    Returns:
        Dict mapping doctor id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    timeout = timeout_sec if timeout_sec is not None else _TIMEOUT_SEC
    keyed = [d for d in doctors if d.api_key]
    results = await asyncio.gather(*(_check_one(d, provider_factory, timeout) for d in keyed))
    for doctor_id, ok, err in results:
        if not ok:
            logger.warning("Health check failed for %s: %s", doctor_id, err)
    return {doctor_id: (ok, err) for doctor_id, ok, err in results}
