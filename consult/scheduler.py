"""Turn scheduling: the per-round speaking order."""

import logging
import random

from consult.models import ACTIVE, Doctor

logger = logging.getLogger(__name__)

TURN_ORDERS = ("random", "custom")


def generate_turn_queue(
    doctors: list[Doctor],
    turn_order: str,
    rng: random.Random | None = None,
) -> list[str]:
    """Return the ids of active doctors in speaking order.

    "random" orders ids by a random key per id (uniform shuffle, not
    cryptographic); "custom" keeps roster order.
    """
    if turn_order not in TURN_ORDERS:
        raise ValueError(f"Unknown turn order {turn_order!r}, expected one of {TURN_ORDERS}")

    actives = [d.id for d in doctors if d.status == ACTIVE]
    if turn_order == "random":
        rand = rng or random
        keyed = [(rand.random(), doctor_id) for doctor_id in actives]
        keyed.sort(key=lambda pair: pair[0])
        actives = [doctor_id for _, doctor_id in keyed]

    logger.debug("Turn queue (%s): %s", turn_order, actives)
    return actives
