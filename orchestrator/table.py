"""Concurrency-safe run table with a per-run broadcast channel."""

from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from core import RunRecord, utcnow
from utils.exceptions import RunNotFoundError

from .store import RunStore


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
RunHandler = Callable[[RunRecord], Any]
RunUpdater = Callable[[RunRecord], RunRecord]


class RunTable:
    """In-memory run map; every mutation is persisted, then broadcast.

    Writes are serialized by one lock so persisted order and broadcast order
    match the order mutations were applied.
    """

    def __init__(self, store: RunStore, *, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._runs: Dict[str, RunRecord] = {}
        self._handlers: Dict[str, List[RunHandler]] = {}
        self._lock = asyncio.Lock()
        self._loaded = False
        self._unsaved = False

    def now(self) -> datetime:
        return self._clock()

    def load(self) -> List[RunRecord]:
        """Read the store once; later calls are no-ops."""
        if not self._loaded:
            self._loaded = True
            self._runs = {run.id: run for run in self._store.load()}
            logger.info("run_table_loaded runs=%d", len(self._runs))
        return list(self._runs.values())

    def get(self, run_id: str) -> Optional[RunRecord]:
        run = self._runs.get(run_id)
        return run.snapshot(self.now()) if run else None

    def require(self, run_id: str) -> RunRecord:
        run = self.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def list(self, library_id: Optional[str] = None) -> List[RunRecord]:
        now = self.now()
        runs = sorted(self._runs.values(), key=lambda run: run.updated_at, reverse=True)
        if library_id:
            runs = [run for run in runs if run.library_id == library_id]
        return [run.snapshot(now) for run in runs]

    async def insert(self, run: RunRecord) -> RunRecord:
        async with self._lock:
            if run.id in self._runs:
                raise ValueError(f"run {run.id} already exists")
            await self._commit(run)
            return run.snapshot(self.now())

    async def replace(self, run_id: str, updater: RunUpdater) -> RunRecord:
        """Apply ``updater`` to the current record as one whole-record step.

        Terminal records are never mutated again; the call returns the
        unchanged snapshot and broadcasts nothing.
        """
        async with self._lock:
            current = self._runs.get(run_id)
            if current is None:
                raise RunNotFoundError(run_id)
            if current.is_terminal:
                logger.warning("run_write_ignored run_id=%s status=%s", run_id, current.status.value)
                return current.snapshot(self.now())
            updated = updater(current).model_copy(update={"updated_at": self.now()})
            await self._commit(updated)
            return updated.snapshot(self.now())

    async def _commit(self, run: RunRecord) -> None:
        runs = dict(self._runs)
        runs[run.id] = run
        try:
            await asyncio.to_thread(self._store.save, list(runs.values()))
        except Exception:
            # A terminal record is installed even when unsaved; the next
            # whole-table save (or flush) persists it.
            if not run.is_terminal:
                raise
            logger.exception("run_save_failed run_id=%s status=%s", run.id, run.status.value)
            self._unsaved = True
        else:
            self._unsaved = False
        self._runs = runs
        self._notify(run.snapshot(self.now()))

    @property
    def unsaved(self) -> bool:
        return self._unsaved

    async def flush(self) -> bool:
        """Retry persisting the table after a failed terminal save. True when clean."""
        async with self._lock:
            if not self._unsaved:
                return True
            try:
                await asyncio.to_thread(self._store.save, list(self._runs.values()))
            except Exception:
                logger.exception("run_table_flush_failed runs=%d", len(self._runs))
                return False
            self._unsaved = False
            logger.info("run_table_flushed runs=%d", len(self._runs))
            return True

    def subscribe(self, run_id: str, handler: RunHandler) -> Callable[[], None]:
        self._handlers.setdefault(run_id, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(run_id) or []
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(run_id, None)

        return unsubscribe

    def _notify(self, run: RunRecord) -> None:
        for handler in list(self._handlers.get(run.id) or []):
            try:
                handler(run)
            except Exception:
                logger.exception("run_subscriber_failed run_id=%s", run.id)
