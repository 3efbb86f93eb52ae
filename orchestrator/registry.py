"""Run registry: public facade for creating, reading, cancelling and watching runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import ValidationError

from config.settings import ResearchSettings, get_research_settings
from core import (
    CancellationToken,
    ProviderConfig,
    ResearchCredentials,
    RunBudget,
    RunPhase,
    RunRecord,
    RunStatus,
    utcnow,
)
from intelligence import Synthesizer
from intelligence.citations import clip
from intelligence.llm import SUPPORTED_PROVIDERS
from sources import SourceAcquisition
from utils.exceptions import RunNotFoundError, RunValidationError

from .service import RunOrchestrator
from .store import JsonFileRunStore, RunStore
from .table import Clock, RunHandler, RunTable


logger = logging.getLogger(__name__)

BudgetInput = Union[RunBudget, Mapping[str, Any], None]
ProviderInput = Union[ProviderConfig, Mapping[str, Any], None]


def _as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return dict(value)


class RunRegistry:
    """Owns the run table, the per-run cancellation tokens and execution tasks."""

    def __init__(
        self,
        *,
        store: Optional[RunStore] = None,
        acquisition: Optional[SourceAcquisition] = None,
        synthesizer: Optional[Synthesizer] = None,
        settings: Optional[ResearchSettings] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._settings = settings or get_research_settings()
        self._table = RunTable(store or JsonFileRunStore(self._settings.runs_file), clock=clock)
        self._orchestrator = RunOrchestrator(
            self._table,
            acquisition=acquisition,
            synthesizer=synthesizer,
            settings=self._settings,
        )
        self._tokens: Dict[str, CancellationToken] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._startup_lock = asyncio.Lock()
        self._started = False

    @property
    def default_budget(self) -> RunBudget:
        s = self._settings
        return RunBudget(
            max_usd=s.max_usd,
            max_input_tokens=s.max_input_tokens,
            max_output_tokens=s.max_output_tokens,
            max_minutes=s.max_minutes,
            max_sources=s.max_sources,
        )

    @property
    def default_provider_config(self) -> ProviderConfig:
        s = self._settings
        return ProviderConfig(llm_provider=s.llm_provider, llm_model=s.llm_model, search_enabled=s.search_enabled)

    async def start(self) -> None:
        """Load the run table once and settle runs orphaned by a previous process."""
        async with self._startup_lock:
            if self._started:
                return
            self._started = True
            for run in self._table.load():
                if not run.is_terminal and run.id not in self._tasks:
                    logger.warning("run_orphaned run_id=%s status=%s", run.id, run.status.value)
                    await self._orchestrator.mark_interrupted(run.id)

    async def create(
        self,
        library_id: str,
        query: str,
        context: str = "",
        budget: BudgetInput = None,
        provider_config: ProviderInput = None,
        credentials: Optional[ResearchCredentials] = None,
    ) -> RunRecord:
        """Persist a queued run, start it in the background and return immediately."""
        await self.start()

        library_id = str(library_id or "").strip()
        query = str(query or "").strip()
        if not library_id or not query:
            raise RunValidationError("`library_id` and `query` are required.")

        try:
            run_budget = RunBudget.from_partial(_as_mapping(budget), self.default_budget)
            config = ProviderConfig.from_partial(_as_mapping(provider_config), self.default_provider_config)
        except ValidationError as exc:
            raise RunValidationError("Invalid budget or provider config.", {"errors": exc.errors()}) from exc
        if config.llm_provider not in SUPPORTED_PROVIDERS:
            raise RunValidationError(f"Unsupported LLM provider: {config.llm_provider}")

        now = self._table.now()
        run = RunRecord(
            id=str(uuid4()),
            library_id=library_id,
            query=query,
            status=RunStatus.QUEUED,
            phase=RunPhase.PLAN,
            checkpoint={
                "context": clip(context, self._settings.context_clip),
                "provider_config": config.model_dump(),
            },
            budget=run_budget,
            created_at=now,
            updated_at=now,
        )
        created = await self._table.insert(run)
        logger.info("run_created run_id=%s library_id=%s", run.id, library_id)

        token = CancellationToken()
        self._tokens[run.id] = token
        task = asyncio.create_task(
            self._orchestrator.execute(
                run.id,
                context=str(context or ""),
                credentials=credentials or ResearchCredentials(),
                provider_config=config,
                token=token,
            ),
            name=f"research-run-{run.id}",
        )
        self._tasks[run.id] = task
        task.add_done_callback(lambda _task, run_id=run.id: self._release(run_id))
        return created

    def _release(self, run_id: str) -> None:
        self._tokens.pop(run_id, None)
        self._tasks.pop(run_id, None)

    async def list(self, library_id: Optional[str] = None) -> List[RunRecord]:
        """Runs ordered by ``updated_at``, newest first."""
        await self.start()
        return self._table.list(library_id)

    async def get(self, run_id: str) -> Optional[RunRecord]:
        await self.start()
        return self._table.get(run_id)

    async def cancel(self, run_id: str) -> RunRecord:
        """Signal cancellation of an active run; terminal runs are returned unchanged."""
        await self.start()
        run = self._table.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.is_terminal:
            return run
        token = self._tokens.get(run_id)
        if token is not None:
            token.cancel()
            logger.info("run_cancel_requested run_id=%s phase=%s", run_id, run.phase.value)
        return run

    def subscribe(self, run_id: str, handler: RunHandler) -> Callable[[], None]:
        """Call ``handler`` with every persisted change of ``run_id``, in order."""
        return self._table.subscribe(run_id, handler)

    async def stream(self, run_id: str) -> AsyncIterator[RunRecord]:
        """Yield the current snapshot, then each change, ending after a terminal one."""
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self.subscribe(run_id, queue.put_nowait)
        try:
            current = await self.get(run_id)
            if current is None:
                raise RunNotFoundError(run_id)
            yield current
            last_seen = current.updated_at
            while not current.is_terminal:
                current = await queue.get()
                if current.updated_at < last_seen:
                    continue
                last_seen = current.updated_at
                yield current
        finally:
            unsubscribe()

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> RunRecord:
        """Wait for the run's execution task, then return its final snapshot."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        run = await self.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def aclose(self) -> None:
        """Cancel every active run and wait for each to settle."""
        tasks = list(self._tasks.values())
        for token in list(self._tokens.values()):
            token.cancel("registry shutting down")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._table.flush()
