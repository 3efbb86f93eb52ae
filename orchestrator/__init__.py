"""Research run orchestration: registry, state machine, budget and persistence."""

from .budget import BudgetVerdict, evaluate
from .registry import RunRegistry
from .service import RunOrchestrator
from .store import InMemoryRunStore, JsonFileRunStore, RunStore
from .table import RunTable

__all__ = [
    "BudgetVerdict",
    "InMemoryRunStore",
    "JsonFileRunStore",
    "RunOrchestrator",
    "RunRegistry",
    "RunStore",
    "RunTable",
    "evaluate",
]
