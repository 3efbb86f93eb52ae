"""Core contracts and shared types for research runs."""

from .cancellation import CancellationToken
from .contracts import (
    PHASE_ORDER,
    TERMINAL_STATUSES,
    Artifact,
    ArtifactKind,
    Citation,
    ProviderConfig,
    ResearchClaim,
    ResearchCredentials,
    RunBudget,
    RunPhase,
    RunRecord,
    RunStatus,
    SourceDoc,
    UsageMeter,
    elapsed_ms,
    utcnow,
)

__all__ = [
    "CancellationToken",
    "PHASE_ORDER",
    "TERMINAL_STATUSES",
    "Artifact",
    "ArtifactKind",
    "Citation",
    "ProviderConfig",
    "ResearchClaim",
    "ResearchCredentials",
    "RunBudget",
    "RunPhase",
    "RunRecord",
    "RunStatus",
    "SourceDoc",
    "UsageMeter",
    "elapsed_ms",
    "utcnow",
]
