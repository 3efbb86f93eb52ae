"""Run orchestrator: the phase state machine and sole writer of run records."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from config.settings import ResearchSettings, get_research_settings
from core import (
    PHASE_ORDER,
    Artifact,
    ArtifactKind,
    CancellationToken,
    ProviderConfig,
    ResearchClaim,
    ResearchCredentials,
    RunPhase,
    RunRecord,
    RunStatus,
    SourceDoc,
)
from intelligence import Synthesizer, SynthesisResult, extract_claims, validate_claim_citations
from intelligence.llm import LLMResponse
from sources import SourceAcquisition
from utils.exceptions import ResearchError, RunCancelledError

from . import budget
from .table import RunTable


logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Run interrupted: the process stopped before it finished."


@dataclass
class RunContext:
    """Per-execution working state handed from phase to phase."""

    run_id: str
    query: str
    context: str
    credentials: ResearchCredentials
    provider_config: ProviderConfig
    token: CancellationToken
    max_sources: int = 0
    hints: List[SourceDoc] = field(default_factory=list)
    fetched: List[SourceDoc] = field(default_factory=list)
    extracted: List[ResearchClaim] = field(default_factory=list)
    synthesis: Optional[SynthesisResult] = None


PhaseStep = Callable[[RunContext], Awaitable[None]]


def _error_message(exc: BaseException) -> str:
    text = (exc.message if isinstance(exc, ResearchError) else str(exc)).strip()
    return text or exc.__class__.__name__


class RunOrchestrator:
    """Drives one run through plan → query → fetch → extract → synthesize → propose."""

    def __init__(
        self,
        table: RunTable,
        *,
        acquisition: Optional[SourceAcquisition] = None,
        synthesizer: Optional[Synthesizer] = None,
        settings: Optional[ResearchSettings] = None,
    ) -> None:
        self._table = table
        self._settings = settings or get_research_settings()
        self._acquisition = acquisition or SourceAcquisition(body_clip=self._settings.body_clip)
        self._synthesizer = synthesizer or Synthesizer(
            max_tokens=self._settings.synthesis_max_tokens,
            temperature=self._settings.synthesis_temperature,
        )
        self._steps: Dict[RunPhase, PhaseStep] = {
            RunPhase.PLAN: self._plan,
            RunPhase.QUERY: self._query,
            RunPhase.FETCH: self._fetch,
            RunPhase.EXTRACT: self._extract,
            RunPhase.SYNTHESIZE: self._synthesize,
            RunPhase.PROPOSE: self._propose,
        }

    async def execute(
        self,
        run_id: str,
        *,
        context: str,
        credentials: ResearchCredentials,
        provider_config: ProviderConfig,
        token: CancellationToken,
    ) -> Optional[RunRecord]:
        """Run every phase and settle in exactly one terminal state. Never raises."""
        status, error = await self._drive(run_id, context, credentials, provider_config, token)
        try:
            return await self._finish(run_id, status, error)
        except Exception:
            logger.exception("run_finish_failed run_id=%s status=%s", run_id, status.value)
            return self._table.get(run_id)

    async def mark_interrupted(self, run_id: str) -> RunRecord:
        """Settle a run left non-terminal by a previous process."""
        return await self._finish(run_id, RunStatus.FAILED, INTERRUPTED_MESSAGE)

    async def _drive(
        self,
        run_id: str,
        context: str,
        credentials: ResearchCredentials,
        provider_config: ProviderConfig,
        token: CancellationToken,
    ) -> Tuple[RunStatus, Optional[str]]:
        try:
            run = self._table.require(run_id)
            ctx = RunContext(
                run_id=run_id,
                query=run.query,
                context=context,
                credentials=credentials,
                provider_config=provider_config,
                token=token,
                max_sources=run.budget.max_sources,
            )
            for phase in PHASE_ORDER:
                token.raise_if_cancelled()
                if phase is RunPhase.PROPOSE:
                    # All-or-nothing: one bad claim fails the run before any artifact exists.
                    validate_claim_citations(self._require_synthesis(ctx).claims)
                await self._enter_phase(run_id, phase)
                await self._steps[phase](ctx)
                token.raise_if_cancelled()
                verdict = budget.evaluate(self._table.require(run_id), now=self._table.now())
                if verdict.exceeded:
                    logger.warning("run_budget_exceeded run_id=%s phase=%s reason=%s", run_id, phase.value, verdict.reason)
                    return RunStatus.BUDGET_EXCEEDED, verdict.reason
            return RunStatus.COMPLETED, None
        except RunCancelledError:
            logger.info("run_cancelled run_id=%s", run_id)
            return RunStatus.CANCELLED, None
        except Exception as exc:
            logger.exception("run_failed run_id=%s error=%s", run_id, exc)
            return RunStatus.FAILED, _error_message(exc)

    async def _enter_phase(self, run_id: str, phase: RunPhase) -> RunRecord:
        logger.info("run_phase run_id=%s phase=%s", run_id, phase.value)
        return await self._table.replace(
            run_id,
            lambda run: run.model_copy(update={"status": RunStatus.RUNNING, "phase": phase}),
        )

    async def _checkpoint(self, run_id: str, values: Dict[str, Any]) -> RunRecord:
        def apply(run: RunRecord) -> RunRecord:
            return run.model_copy(update={"checkpoint": {**run.checkpoint, **values}})

        return await self._table.replace(run_id, apply)

    async def _finish(self, run_id: str, status: RunStatus, error: Optional[str] = None) -> RunRecord:
        finished = await self._table.replace(
            run_id,
            lambda run: run.model_copy(update={"status": status, "error": error}),
        )
        logger.info("run_finished run_id=%s status=%s error=%s", run_id, finished.status.value, finished.error)
        return finished

    async def _charge_llm_usage(self, run_id: str, response: LLMResponse) -> None:
        usd = (
            response.input_tokens * self._settings.input_token_cost
            + response.output_tokens * self._settings.output_token_cost
        )
        await self._table.replace(
            run_id,
            lambda run: run.model_copy(
                update={
                    "usage": run.usage.charge(
                        usd=usd,
                        input_tokens=response.input_tokens,
                        output_tokens=response.output_tokens,
                    )
                }
            ),
        )

    async def _plan(self, ctx: RunContext) -> None:
        plan = (
            f"Research map for '{ctx.query}': search up to {ctx.max_sources} sources, "
            "fetch them in order, extract cited claims, synthesize, propose changes."
        )
        await self._checkpoint(ctx.run_id, {"plan": plan})

    async def _query(self, ctx: RunContext) -> None:
        if ctx.provider_config.search_enabled:
            ctx.hints = await self._acquisition.search(
                ctx.query, ctx.max_sources, ctx.credentials.search_api_key
            )
        else:
            ctx.hints = []
        await self._checkpoint(
            ctx.run_id,
            {
                "source_hints": [
                    hint.model_dump(mode="json", include={"title", "url", "snippet", "published_at"})
                    for hint in ctx.hints
                ],
                "source_hint_count": len(ctx.hints),
            },
        )

    async def _fetch(self, ctx: RunContext) -> None:
        ctx.fetched = await self._acquisition.fetch(ctx.hints, ctx.token)
        fetched_sources = [
            source.model_dump(mode="json", include={"title", "url", "published_at", "fallback"})
            for source in ctx.fetched
        ]

        def apply(run: RunRecord) -> RunRecord:
            return run.model_copy(
                update={
                    "checkpoint": {**run.checkpoint, "fetched_sources": fetched_sources},
                    "usage": run.usage.with_sources(len(ctx.fetched)),
                }
            )

        await self._table.replace(ctx.run_id, apply)

    async def _extract(self, ctx: RunContext) -> None:
        ctx.extracted = extract_claims(ctx.fetched)
        await self._checkpoint(ctx.run_id, {"extracted_claim_count": len(ctx.extracted)})

    async def _synthesize(self, ctx: RunContext) -> None:
        async def on_usage(response: LLMResponse) -> None:
            await self._charge_llm_usage(ctx.run_id, response)

        ctx.synthesis = await self._synthesizer.synthesize(
            ctx.query,
            ctx.context,
            ctx.extracted,
            api_key=ctx.credentials.llm_api_key,
            provider_config=ctx.provider_config,
            on_usage=on_usage,
        )
        await self._checkpoint(
            ctx.run_id,
            {
                "synthesized_claim_count": len(ctx.synthesis.claims),
                "synthesis_mode": ctx.synthesis.mode,
            },
        )

    @staticmethod
    def _require_synthesis(ctx: RunContext) -> SynthesisResult:
        if ctx.synthesis is None:
            raise RuntimeError("propose phase reached without a synthesis result")
        return ctx.synthesis

    async def _propose(self, ctx: RunContext) -> None:
        synthesis = self._require_synthesis(ctx)

        citations = [citation for claim in synthesis.claims for citation in claim.citations]
        claims_json = json.dumps(
            [claim.model_dump(mode="json") for claim in synthesis.claims],
            ensure_ascii=False,
            indent=2,
        )
        now = self._table.now()

        def artifact(kind: ArtifactKind, content: str, cited: bool = False) -> Artifact:
            return Artifact(
                id=str(uuid4()),
                run_id=ctx.run_id,
                kind=kind,
                content=content,
                citations=[c.model_copy() for c in citations] if cited else None,
                created_at=now,
            )

        artifacts = [
            artifact(ArtifactKind.NOTES, synthesis.notes),
            artifact(ArtifactKind.OUTLINE, synthesis.outline),
            artifact(ArtifactKind.CLAIMS, claims_json, cited=True),
            artifact(ArtifactKind.PATCHES, synthesis.suggested_changes, cited=True),
        ]
        await self._table.replace(
            ctx.run_id,
            lambda run: run.model_copy(update={"artifacts": [*run.artifacts, *artifacts]}),
        )
