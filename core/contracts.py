"""Canonical data contracts for research runs."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_ms(created_at: datetime, now: datetime) -> int:
    """Milliseconds since ``created_at``; never negative."""
    return max(0, int((now - created_at).total_seconds() * 1000))


class RunStatus(str, Enum):
    """Lifecycle status of a run."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    BUDGET_EXCEEDED = "budget_exceeded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED, RunStatus.BUDGET_EXCEEDED}
)


class RunPhase(str, Enum):
    """Ordered pipeline stages; meaningful only while running."""

    PLAN = "plan"
    QUERY = "query"
    FETCH = "fetch"
    EXTRACT = "extract"
    SYNTHESIZE = "synthesize"
    PROPOSE = "propose"


PHASE_ORDER = (
    RunPhase.PLAN,
    RunPhase.QUERY,
    RunPhase.FETCH,
    RunPhase.EXTRACT,
    RunPhase.SYNTHESIZE,
    RunPhase.PROPOSE,
)


class ArtifactKind(str, Enum):
    NOTES = "notes"
    OUTLINE = "outline"
    CLAIMS = "claims"
    PATCHES = "patches"


class RunBudget(BaseModel):
    """Five fixed ceilings, immutable once a run exists."""

    model_config = ConfigDict(frozen=True)

    max_usd: float = Field(ge=0)
    max_input_tokens: int = Field(ge=0)
    max_output_tokens: int = Field(ge=0)
    max_minutes: float = Field(ge=0)
    max_sources: int = Field(ge=0)

    @classmethod
    def from_partial(cls, partial: Optional[Mapping[str, Any]], defaults: "RunBudget") -> "RunBudget":
        """Fill fields missing (or None) in ``partial`` from ``defaults``."""
        values = defaults.model_dump()
        for key, value in dict(partial or {}).items():
            if key in values and value is not None:
                values[key] = value
        return cls(**values)


class UsageMeter(BaseModel):
    """Resource consumption; every counter only grows within a run."""

    model_config = ConfigDict(frozen=True)

    spent_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    sources_fetched: int = 0
    elapsed_ms: int = 0

    def charge(
        self,
        *,
        usd: float = 0.0,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> "UsageMeter":
        return self.model_copy(
            update={
                "spent_usd": self.spent_usd + max(0.0, float(usd)),
                "input_tokens": self.input_tokens + max(0, int(input_tokens)),
                "output_tokens": self.output_tokens + max(0, int(output_tokens)),
            }
        )

    def with_sources(self, count: int) -> "UsageMeter":
        return self.model_copy(update={"sources_fetched": max(self.sources_fetched, int(count))})


class Citation(BaseModel):
    """Provenance record backing a claim."""

    url: str
    title: str
    quote: str
    claim_ref: str
    published_at: Optional[str] = None


class ResearchClaim(BaseModel):
    """Atomic factual assertion with its provenance."""

    claim_ref: str
    text: str
    citations: List[Citation]


class Artifact(BaseModel):
    """Typed output blob produced by a run; immutable once appended."""

    model_config = ConfigDict(frozen=True)

    id: str
    run_id: str
    kind: ArtifactKind
    content: str
    citations: Optional[List[Citation]] = None
    created_at: datetime = Field(default_factory=utcnow)


class ProviderConfig(BaseModel):
    """Per-run provider selection."""

    llm_provider: str
    llm_model: str
    search_enabled: bool

    @classmethod
    def from_partial(cls, partial: Optional[Mapping[str, Any]], defaults: "ProviderConfig") -> "ProviderConfig":
        values = defaults.model_dump()
        for key, value in dict(partial or {}).items():
            if key in values and value is not None:
                values[key] = value
        return cls(**values)


class ResearchCredentials(BaseModel):
    """Keys supplied by the credential store for one unlocked session."""

    search_api_key: Optional[str] = None
    llm_api_key: Optional[str] = None

    @field_validator("search_api_key", "llm_api_key", mode="before")
    @classmethod
    def _optional_key(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None


class SourceDoc(BaseModel):
    """Search hit, optionally with its fetched body."""

    title: str
    url: str
    snippet: str = ""
    published_at: Optional[str] = None
    body: str = ""
    fallback: bool = False


class RunRecord(BaseModel):
    """Whole-record snapshot of a research run."""

    id: str
    library_id: str
    query: str
    status: RunStatus = RunStatus.QUEUED
    phase: RunPhase = RunPhase.PLAN
    checkpoint: Dict[str, Any] = Field(default_factory=dict)
    budget: RunBudget
    usage: UsageMeter = Field(default_factory=UsageMeter)
    artifacts: List[Artifact] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self, now: datetime) -> "RunRecord":
        """Deep copy with ``usage.elapsed_ms`` derived from ``now``."""
        usage = self.usage.model_copy(update={"elapsed_ms": elapsed_ms(self.created_at, now)})
        return self.model_copy(update={"usage": usage}, deep=True)
