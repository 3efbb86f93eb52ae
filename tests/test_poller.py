from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List

import httpx
import pytest

from client import (
    HttpRunFetcher,
    PollSession,
    PollState,
    RunPollSupervisor,
    format_run_summary,
)
from config.settings import PollSettings
from core import Artifact, ArtifactKind, Citation, RunBudget, RunPhase, RunRecord, RunStatus
from utils.exceptions import SchemaError


T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def _run(run_id: str = "run-0001-abcdef", status: RunStatus = RunStatus.RUNNING, **extra) -> RunRecord:
    return RunRecord(
        id=run_id,
        library_id="lib",
        query="lighthouse keepers",
        status=status,
        phase=extra.pop("phase", RunPhase.FETCH),
        budget=RunBudget(max_usd=1, max_input_tokens=1, max_output_tokens=1, max_minutes=1, max_sources=1),
        created_at=T0,
        updated_at=T0,
        **extra,
    )


class ScriptedFetch:
    """Replays a script of runs or exceptions, one per poll."""

    def __init__(self, script: List[object]) -> None:
        self.script = list(script)
        self.calls = 0

    async def __call__(self, run_id: str) -> RunRecord:
        self.calls += 1
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def _recording_sleep(delays: List[float]):
    async def sleep(seconds: float) -> bool:
        delays.append(seconds)
        return False

    return sleep


def _state() -> PollState:
    return PollState(interval=2.5, backoff_base=0.4, max_failures=3)


@pytest.mark.asyncio
async def test_three_failures_emit_one_advisory() -> None:
    delays: List[float] = []
    advisories = []
    fetch = ScriptedFetch([httpx.ConnectError("down")] * 5)
    supervisor = RunPollSupervisor(
        _run(),
        fetch,
        state=_state(),
        sleep=_recording_sleep(delays),
        on_advisory=lambda run, message: advisories.append(message),
        on_terminal=lambda run, message: pytest.fail("no terminal summary expected"),
    )

    outcome = await supervisor.run()

    assert outcome.kind == "advisory"
    assert fetch.calls == 3
    assert delays == [2.5, 0.4, 0.8]
    assert len(advisories) == 1
    assert "Last status: running (phase fetch)" in advisories[0]
    assert "down" in advisories[0]


@pytest.mark.asyncio
async def test_success_resets_failure_count() -> None:
    delays: List[float] = []
    summaries = []
    fetch = ScriptedFetch(
        [
            httpx.ConnectError("blip"),
            httpx.ConnectError("blip"),
            _run(phase=RunPhase.EXTRACT),
            httpx.ReadTimeout("slow"),
            httpx.ReadTimeout("slow"),
            _run(status=RunStatus.COMPLETED, phase=RunPhase.PROPOSE),
        ]
    )
    updates = []
    supervisor = RunPollSupervisor(
        _run(),
        fetch,
        state=_state(),
        sleep=_recording_sleep(delays),
        on_update=updates.append,
        on_terminal=lambda run, message: summaries.append(message),
        on_advisory=lambda run, message: pytest.fail("breaker must not trip"),
    )

    outcome = await supervisor.run()

    assert outcome.kind == "terminal"
    assert delays == [2.5, 0.4, 0.8, 2.5, 0.4, 0.8]
    assert [run.phase for run in updates] == [RunPhase.EXTRACT, RunPhase.PROPOSE]
    assert summaries == [outcome.message]
    assert summaries[0].startswith("Deep Research completed (run-0001)")


@pytest.mark.asyncio
async def test_terminal_initial_run_needs_no_polling() -> None:
    fetch = ScriptedFetch([])
    failed = _run(status=RunStatus.FAILED, error="Search failed (429).")
    outcome = await RunPollSupervisor(failed, fetch, state=_state()).run()
    assert outcome.kind == "terminal"
    assert fetch.calls == 0
    assert "Search failed (429)." in outcome.message


@pytest.mark.asyncio
async def test_abort_interrupts_inflight_fetch() -> None:
    started = asyncio.Event()

    async def hanging_fetch(run_id: str) -> RunRecord:
        started.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    supervisor = RunPollSupervisor(
        _run(),
        hanging_fetch,
        state=_state(),
        sleep=_recording_sleep([]),
        on_terminal=lambda run, message: pytest.fail("aborted supervisor must stay silent"),
        on_advisory=lambda run, message: pytest.fail("aborted supervisor must stay silent"),
    )
    task = asyncio.create_task(supervisor.run())
    await asyncio.wait_for(started.wait(), timeout=2)
    supervisor.token.cancel()

    outcome = await asyncio.wait_for(task, timeout=2)
    assert outcome.kind == "aborted"
    assert outcome.run.id == "run-0001-abcdef"


@pytest.mark.asyncio
async def test_session_start_aborts_previous_supervisor() -> None:
    started = asyncio.Event()

    async def fetch(run_id: str) -> RunRecord:
        if run_id == "first-run":
            started.set()
            await asyncio.Event().wait()
        return _run(run_id, status=RunStatus.COMPLETED)

    terminal = []
    session = PollSession(
        fetch,
        settings=PollSettings(interval_sec=0, backoff_base_sec=0),
        on_terminal=lambda run, message: terminal.append(run.id),
    )
    first = session.start(_run("first-run"))
    await asyncio.wait_for(started.wait(), timeout=2)
    second = session.start(_run("second-run"))

    assert (await asyncio.wait_for(first, timeout=2)).kind == "aborted"
    assert (await asyncio.wait_for(second, timeout=2)).kind == "terminal"
    assert terminal == ["second-run"]
    assert session.active is None
    await session.close()


@pytest.mark.asyncio
async def test_http_fetcher_parses_and_raises() -> None:
    payload = _run("remote-run").model_dump(mode="json")

    def handler(request: httpx.Request) -> httpx.Response:
        run_id = request.url.path.rsplit("/", 1)[-1]
        if run_id == "remote-run":
            return httpx.Response(200, json={"run": payload})
        if run_id == "empty":
            return httpx.Response(200, json={})
        return httpx.Response(503, json={"detail": "unavailable"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
    fetcher = HttpRunFetcher("http://testserver", client=client)
    try:
        run = await fetcher("remote-run")
        assert run.id == "remote-run"
        assert run.status is RunStatus.RUNNING
        with pytest.raises(httpx.HTTPStatusError):
            await fetcher("broken")
        with pytest.raises(SchemaError):
            await fetcher("empty")
    finally:
        await client.aclose()


def test_summary_lists_outline_and_citations() -> None:
    citation = Citation(url="https://example.com/roster", title="Roster", quote="six weeks", claim_ref="C1")
    artifacts = [
        Artifact(id="a1", run_id="run-0001-abcdef", kind=ArtifactKind.OUTLINE, content="1) Duty roster"),
        Artifact(id="a2", run_id="run-0001-abcdef", kind=ArtifactKind.CLAIMS, content="[]", citations=[citation]),
    ]
    text = format_run_summary(_run(status=RunStatus.COMPLETED, artifacts=artifacts))
    assert text.splitlines()[0] == "Deep Research completed (run-0001)"
    assert "1) Duty roster" in text
    assert '- [Roster](https://example.com/roster) "six weeks"' in text

    budget_text = format_run_summary(_run(status=RunStatus.BUDGET_EXCEEDED, error="Maximum USD budget exceeded."))
    assert budget_text.startswith("Deep Research budget exceeded (run-0001)")
    assert "Phase: fetch" in budget_text
