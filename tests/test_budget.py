from __future__ import annotations

from datetime import datetime, timedelta, timezone

from core import RunBudget, RunRecord, UsageMeter
from orchestrator import budget


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _run(usage: UsageMeter, **limits) -> RunRecord:
    values = dict(max_usd=1.0, max_input_tokens=1000, max_output_tokens=500, max_minutes=10.0, max_sources=4)
    values.update(limits)
    return RunRecord(
        id="run_1",
        library_id="lib_1",
        query="victorian lighthouses",
        budget=RunBudget(**values),
        usage=usage,
        created_at=T0,
        updated_at=T0,
    )


def test_within_budget() -> None:
    verdict = budget.evaluate(_run(UsageMeter(spent_usd=0.5, input_tokens=10)), now=T0 + timedelta(minutes=1))
    assert verdict.exceeded is False
    assert verdict.reason is None


def test_equal_to_ceiling_is_not_exceeded() -> None:
    usage = UsageMeter(spent_usd=1.0, input_tokens=1000, output_tokens=500, sources_fetched=4)
    verdict = budget.evaluate(_run(usage), now=T0 + timedelta(minutes=10))
    assert verdict.exceeded is False


def test_usd_reported_first_when_several_dimensions_exceeded() -> None:
    usage = UsageMeter(spent_usd=1.5, input_tokens=5000, output_tokens=9000, sources_fetched=10)
    verdict = budget.evaluate(_run(usage), now=T0 + timedelta(hours=2))
    assert verdict.exceeded is True
    assert verdict.reason == budget.USD_EXCEEDED


def test_dimension_order_after_usd() -> None:
    now = T0 + timedelta(hours=2)
    both_tokens = UsageMeter(input_tokens=1001, output_tokens=501)
    assert budget.evaluate(_run(both_tokens), now=now).reason == budget.INPUT_TOKENS_EXCEEDED
    output_and_sources = UsageMeter(output_tokens=501, sources_fetched=5)
    assert budget.evaluate(_run(output_and_sources), now=now).reason == budget.OUTPUT_TOKENS_EXCEEDED
    assert budget.evaluate(_run(UsageMeter(sources_fetched=5)), now=now).reason == budget.SOURCES_EXCEEDED
    assert budget.evaluate(_run(UsageMeter()), now=now).reason == budget.TIME_EXCEEDED


def test_elapsed_time_uses_clock_not_stored_value() -> None:
    run = _run(UsageMeter(elapsed_ms=10 ** 9), max_minutes=1.0)
    assert budget.evaluate(run, now=T0 + timedelta(seconds=30)).exceeded is False
    verdict = budget.evaluate(run, now=T0 + timedelta(seconds=61))
    assert verdict.reason == budget.TIME_EXCEEDED


def test_zero_ceiling_allows_zero_usage() -> None:
    run = _run(UsageMeter(), max_usd=0.0, max_sources=0)
    assert budget.evaluate(run, now=T0).exceeded is False
    assert budget.evaluate(_run(UsageMeter(spent_usd=0.0001), max_usd=0.0), now=T0).reason == budget.USD_EXCEEDED
