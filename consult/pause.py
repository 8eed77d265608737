"""Wakeable pause gate shared by every suspension point of a consultation."""

import asyncio


class PauseGate:
    """Open by default. Waiters block while closed and all wake on resume.

    Pausing never interrupts an external call already in flight; only the
    next step waits.
    """

    def __init__(self) -> None:
        self._open = asyncio.Event()
        self._open.set()

    @property
    def paused(self) -> bool:
        return not self._open.is_set()

    def pause(self) -> None:
        self._open.clear()

    def resume(self) -> None:
        self._open.set()

    async def wait(self) -> None:
        await self._open.wait()
