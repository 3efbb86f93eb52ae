"""Client-side run supervisor: polls a run until it settles, with backoff and a failure breaker."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from config.settings import PollSettings, get_poll_settings
from core import CancellationToken, RunRecord
from utils.exceptions import SchemaError

from .summary import format_poll_advisory, format_run_summary


logger = logging.getLogger(__name__)

RunFetcher = Callable[[str], Awaitable[RunRecord]]
Sleeper = Callable[[float], Awaitable[bool]]
UpdateHandler = Callable[[RunRecord], Any]
TerminalHandler = Callable[[RunRecord, str], Any]
AdvisoryHandler = Callable[[RunRecord, str], Any]


@dataclass
class PollState:
    """Backoff/breaker state: steady interval until failures, then doubling retries."""

    interval: float = 2.5
    backoff_base: float = 0.4
    max_failures: int = 3
    failure_count: int = 0
    last_error: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: PollSettings) -> "PollState":
        return cls(
            interval=settings.interval_sec,
            backoff_base=settings.backoff_base_sec,
            max_failures=settings.max_failures,
        )

    @property
    def tripped(self) -> bool:
        return self.failure_count >= self.max_failures

    def record_success(self) -> None:
        self.failure_count = 0
        self.last_error = None

    def record_failure(self, error: Any) -> bool:
        """Count a failed poll; True once the breaker trips."""
        self.failure_count += 1
        self.last_error = str(error) or error.__class__.__name__
        return self.tripped

    def next_delay(self) -> float:
        if self.failure_count == 0:
            return self.interval
        return self.backoff_base * 2 ** (self.failure_count - 1)


@dataclass
class PollOutcome:
    kind: str  # terminal | advisory | aborted
    run: RunRecord
    message: Optional[str] = None


class RunPollSupervisor:
    """Polls one run until a terminal status, the failure breaker, or abort."""

    def __init__(
        self,
        run: RunRecord,
        fetch_run: RunFetcher,
        *,
        token: Optional[CancellationToken] = None,
        state: Optional[PollState] = None,
        sleep: Optional[Sleeper] = None,
        on_update: Optional[UpdateHandler] = None,
        on_terminal: Optional[TerminalHandler] = None,
        on_advisory: Optional[AdvisoryHandler] = None,
    ) -> None:
        self._initial = run
        self._fetch_run = fetch_run
        self.token = token or CancellationToken()
        self.state = state or PollState.from_settings(get_poll_settings())
        self._sleep = sleep or self.token.sleep
        self._on_update = on_update
        self._on_terminal = on_terminal
        self._on_advisory = on_advisory

    async def _fetch_or_abort(self, run_id: str) -> Optional[RunRecord]:
        fetch_task = asyncio.ensure_future(self._fetch_run(run_id))
        abort_task = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait({fetch_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_task.cancel()
        if not fetch_task.done():
            fetch_task.cancel()
            return None
        return fetch_task.result()

    async def run(self) -> PollOutcome:
        last_known = self._initial
        if last_known.is_terminal:
            return self._terminal(last_known)

        while not self.token.cancelled:
            if await self._sleep(self.state.next_delay()) or self.token.cancelled:
                break
            try:
                latest = await self._fetch_or_abort(last_known.id)
            except Exception as exc:
                if self.token.cancelled:
                    break
                tripped = self.state.record_failure(exc)
                logger.warning(
                    "poll_failed run_id=%s failures=%d error=%s",
                    last_known.id,
                    self.state.failure_count,
                    self.state.last_error,
                )
                if tripped:
                    message = format_poll_advisory(last_known, self.state.last_error)
                    logger.warning("poll_stopped run_id=%s status=%s", last_known.id, last_known.status.value)
                    if self._on_advisory is not None:
                        self._on_advisory(last_known, message)
                    return PollOutcome("advisory", last_known, message)
                continue

            if latest is None:
                break
            self.state.record_success()
            last_known = latest
            if self._on_update is not None:
                self._on_update(latest)
            if latest.is_terminal:
                return self._terminal(latest)

        return PollOutcome("aborted", last_known)

    def _terminal(self, run: RunRecord) -> PollOutcome:
        message = format_run_summary(run)
        if self._on_terminal is not None:
            self._on_terminal(run, message)
        return PollOutcome("terminal", run, message)


class HttpRunFetcher:
    """Fetches run snapshots from the HTTP surface."""

    def __init__(self, base_url: str, *, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(timeout))
        self._owns_client = client is None

    async def __call__(self, run_id: str) -> RunRecord:
        response = await self._client.get(f"/api/research/runs/{run_id}")
        if response.status_code != 200:
            raise httpx.HTTPStatusError(
                f"Polling failed ({response.status_code})",
                request=response.request,
                response=response,
            )
        payload = response.json()
        raw = payload.get("run") if isinstance(payload, dict) else None
        if not raw:
            raise SchemaError("Polling response missing run payload")
        return RunRecord.model_validate(raw)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class PollSession:
    """At most one active supervisor; starting another aborts the previous one."""

    def __init__(
        self,
        fetch_run: RunFetcher,
        *,
        settings: Optional[PollSettings] = None,
        on_update: Optional[UpdateHandler] = None,
        on_terminal: Optional[TerminalHandler] = None,
        on_advisory: Optional[AdvisoryHandler] = None,
    ) -> None:
        self._fetch_run = fetch_run
        self._settings = settings or get_poll_settings()
        self._handlers = dict(on_update=on_update, on_terminal=on_terminal, on_advisory=on_advisory)
        self._supervisor: Optional[RunPollSupervisor] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> Optional[RunPollSupervisor]:
        if self._task is None or self._task.done():
            return None
        return self._supervisor

    def start(self, run: RunRecord) -> asyncio.Task:
        self.abort()
        self._supervisor = RunPollSupervisor(
            run,
            self._fetch_run,
            state=PollState.from_settings(self._settings),
            **self._handlers,
        )
        self._task = asyncio.create_task(self._supervisor.run(), name=f"poll-{run.id}")
        return self._task

    def abort(self) -> None:
        if self._supervisor is not None:
            self._supervisor.token.cancel("poll session replaced")

    async def close(self) -> None:
        self.abort()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
