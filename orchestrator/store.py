"""Run table persistence: one JSON blob holding every run."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Dict, List, Sequence

from pydantic import ValidationError

from core import RunRecord, utcnow
from utils.exceptions import StorageError


logger = logging.getLogger(__name__)


class RunStore(ABC):
    """Loaded once at startup, fully rewritten on every mutation."""

    @abstractmethod
    def load(self) -> List[RunRecord]:
        pass

    @abstractmethod
    def save(self, runs: Sequence[RunRecord]) -> None:
        pass


class InMemoryRunStore(RunStore):
    """Thread-safe store kept in process memory."""

    def __init__(self, runs: Sequence[RunRecord] = ()) -> None:
        self._runs: Dict[str, RunRecord] = {run.id: run for run in runs}
        self._lock = Lock()
        self.save_count = 0

    def load(self) -> List[RunRecord]:
        with self._lock:
            return [run.model_copy(deep=True) for run in self._runs.values()]

    def save(self, runs: Sequence[RunRecord]) -> None:
        with self._lock:
            self._runs = {run.id: run.model_copy(deep=True) for run in runs}
            self.save_count += 1


class JsonFileRunStore(RunStore):
    """Whole run table serialized to a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def load(self) -> List[RunRecord]:
        with self._lock:
            if not self.path.exists():
                return []
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise StorageError(f"Could not read run table {self.path}: {exc}") from exc

        runs: List[RunRecord] = []
        for raw in list((payload or {}).get("runs") or []):
            try:
                runs.append(RunRecord.model_validate(raw))
            except ValidationError as exc:
                logger.warning("run_table_skip_invalid path=%s error=%s", self.path, exc)
        return runs

    def save(self, runs: Sequence[RunRecord]) -> None:
        ordered = sorted(runs, key=lambda run: run.updated_at, reverse=True)
        payload = {
            "runs": [run.model_dump(mode="json") for run in ordered],
            "updated_at": utcnow().isoformat(),
        }
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
                os.replace(tmp_path, self.path)
            except OSError as exc:
                raise StorageError(f"Could not write run table {self.path}: {exc}") from exc
