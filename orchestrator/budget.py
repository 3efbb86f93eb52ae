"""Budget governor: pure evaluation of run usage against its ceilings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from core import RunRecord, elapsed_ms


USD_EXCEEDED = "Maximum USD budget exceeded."
INPUT_TOKENS_EXCEEDED = "Maximum input token budget exceeded."
OUTPUT_TOKENS_EXCEEDED = "Maximum output token budget exceeded."
SOURCES_EXCEEDED = "Maximum source budget exceeded."
TIME_EXCEEDED = "Maximum run time exceeded."


@dataclass(frozen=True)
class BudgetVerdict:
    exceeded: bool
    reason: Optional[str] = None


WITHIN_BUDGET = BudgetVerdict(exceeded=False)


def evaluate(run: RunRecord, *, now: datetime) -> BudgetVerdict:
    """Report the first violated dimension in fixed order.

    Order: USD, input tokens, output tokens, sources, elapsed time. Every
    comparison is strictly greater-than the ceiling. Elapsed time is always
    ``now - created_at``; the stored ``usage.elapsed_ms`` is ignored.
    """
    usage = run.usage
    budget = run.budget

    if usage.spent_usd > budget.max_usd:
        return BudgetVerdict(True, USD_EXCEEDED)
    if usage.input_tokens > budget.max_input_tokens:
        return BudgetVerdict(True, INPUT_TOKENS_EXCEEDED)
    if usage.output_tokens > budget.max_output_tokens:
        return BudgetVerdict(True, OUTPUT_TOKENS_EXCEEDED)
    if usage.sources_fetched > budget.max_sources:
        return BudgetVerdict(True, SOURCES_EXCEEDED)
    if elapsed_ms(run.created_at, now) > budget.max_minutes * 60 * 1000:
        return BudgetVerdict(True, TIME_EXCEEDED)
    return WITHIN_BUDGET
