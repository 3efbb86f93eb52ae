from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from core import (
    PHASE_ORDER,
    ProviderConfig,
    ResearchCredentials,
    RunBudget,
    RunPhase,
    RunRecord,
    RunStatus,
    UsageMeter,
)


def _budget() -> RunBudget:
    return RunBudget(max_usd=5, max_input_tokens=200000, max_output_tokens=40000, max_minutes=45, max_sources=12)


def test_terminal_statuses() -> None:
    assert {s for s in RunStatus if s.is_terminal} == {
        RunStatus.COMPLETED,
        RunStatus.CANCELLED,
        RunStatus.FAILED,
        RunStatus.BUDGET_EXCEEDED,
    }
    assert PHASE_ORDER[0] is RunPhase.PLAN
    assert PHASE_ORDER[-1] is RunPhase.PROPOSE


def test_budget_partial_falls_back_to_defaults() -> None:
    merged = RunBudget.from_partial({"max_usd": 0.01, "max_sources": None, "unknown": 3}, _budget())
    assert merged.max_usd == 0.01
    assert merged.max_sources == 12
    assert merged.max_input_tokens == 200000


def test_budget_rejects_negative_and_is_frozen() -> None:
    with pytest.raises(ValidationError):
        RunBudget.from_partial({"max_usd": -1}, _budget())
    with pytest.raises(ValidationError):
        _budget().max_usd = 10  # type: ignore[misc]


def test_usage_meter_only_grows() -> None:
    usage = UsageMeter().charge(usd=0.02, input_tokens=100, output_tokens=40)
    usage = usage.charge(usd=-5, input_tokens=-10, output_tokens=10)
    assert usage.spent_usd == pytest.approx(0.02)
    assert usage.input_tokens == 100
    assert usage.output_tokens == 50
    assert usage.with_sources(3).with_sources(1).sources_fetched == 3


def test_snapshot_derives_elapsed_and_is_independent() -> None:
    created = datetime(2026, 3, 1, tzinfo=timezone.utc)
    run = RunRecord(id="r", library_id="lib", query="q", budget=_budget(), created_at=created, updated_at=created)
    snap = run.snapshot(created + timedelta(seconds=2))
    assert snap.usage.elapsed_ms == 2000
    snap.checkpoint["plan"] = "mutated"
    assert "plan" not in run.checkpoint
    assert run.snapshot(created - timedelta(seconds=5)).usage.elapsed_ms == 0


def test_credentials_blank_keys_become_none() -> None:
    creds = ResearchCredentials(search_api_key="  ", llm_api_key=" sk-1 ")
    assert creds.search_api_key is None
    assert creds.llm_api_key == "sk-1"


def test_provider_config_partial() -> None:
    defaults = ProviderConfig(llm_provider="anthropic", llm_model="claude-x", search_enabled=True)
    merged = ProviderConfig.from_partial({"search_enabled": False}, defaults)
    assert merged.llm_provider == "anthropic"
    assert merged.search_enabled is False
