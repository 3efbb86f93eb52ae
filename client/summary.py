"""Human-readable messages for run outcomes."""

from __future__ import annotations

from typing import Optional

from core import ArtifactKind, RunRecord, RunStatus


def format_run_summary(run: RunRecord) -> str:
    header = f"Deep Research {run.status.value.replace('_', ' ')} ({run.id[:8]})"
    if run.status != RunStatus.COMPLETED:
        return f"{header}\nPhase: {run.phase.value}\n{run.error or 'No additional details.'}"

    outline = next((a.content for a in run.artifacts if a.kind == ArtifactKind.OUTLINE), "")
    claims = next((a for a in run.artifacts if a.kind == ArtifactKind.CLAIMS), None)
    citations = list(claims.citations or []) if claims else []
    citation_lines = [f'- [{c.title}]({c.url}) "{c.quote[:120]}"' for c in citations[:6]]

    sections = [header]
    if outline:
        sections.append(f"\n{outline}")
    if citation_lines:
        sections.append("\nCitations:\n" + "\n".join(citation_lines))
    return "\n".join(sections)


def format_poll_advisory(last_known: RunRecord, detail: Optional[str]) -> str:
    """Polling gave up; the run itself may still be fine."""
    return (
        "Deep research updates stopped before completion. "
        f"Last status: {last_known.status.value} (phase {last_known.phase.value}). "
        f"{detail or 'Unknown polling error'}"
    )
