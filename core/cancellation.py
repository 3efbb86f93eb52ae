"""Cooperative cancellation token shared by a run's phases."""

from __future__ import annotations

import asyncio
from typing import Optional

from utils.exceptions import RunCancelledError


class CancellationToken:
    """One-shot abort signal, observed at await points chosen by the holder."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancellation requested") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(self._reason or "cancellation requested")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled before the timeout."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, float(seconds)))
            return True
        except asyncio.TimeoutError:
            return False
