from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

import pytest

from core import RunBudget, RunRecord, RunStatus
from orchestrator import InMemoryRunStore, JsonFileRunStore, RunTable
from utils.exceptions import RunNotFoundError, StorageError


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _run(run_id: str, library_id: str = "lib_1", minutes: int = 0) -> RunRecord:
    stamp = T0 + timedelta(minutes=minutes)
    return RunRecord(
        id=run_id,
        library_id=library_id,
        query=f"query {run_id}",
        budget=RunBudget(max_usd=1, max_input_tokens=10, max_output_tokens=10, max_minutes=1, max_sources=1),
        created_at=stamp,
        updated_at=stamp,
    )


class StepClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current = self.current + timedelta(**delta)


def test_json_store_round_trip_orders_newest_first(tmp_path) -> None:
    path = tmp_path / "data" / "runs.json"
    store = JsonFileRunStore(path)
    store.save([_run("old", minutes=0), _run("new", minutes=5)])

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert [row["id"] for row in payload["runs"]] == ["new", "old"]

    loaded = JsonFileRunStore(path).load()
    assert {run.id for run in loaded} == {"old", "new"}
    assert loaded[0].budget.max_usd == 1


def test_json_store_missing_file_loads_empty(tmp_path) -> None:
    assert JsonFileRunStore(tmp_path / "absent.json").load() == []


def test_json_store_skips_invalid_rows_and_rejects_corrupt_file(tmp_path) -> None:
    path = tmp_path / "runs.json"
    good = _run("good").model_dump(mode="json")
    path.write_text(json.dumps({"runs": [good, {"id": "broken"}]}), encoding="utf-8")
    assert [run.id for run in JsonFileRunStore(path).load()] == ["good"]

    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        JsonFileRunStore(path).load()


@pytest.mark.asyncio
async def test_table_persists_before_broadcast_and_freezes_terminal() -> None:
    store = InMemoryRunStore()
    clock = StepClock(T0)
    table = RunTable(store, clock=clock)
    table.load()
    seen = []
    table.subscribe("r1", lambda run: seen.append((run.status, store.save_count)))

    await table.insert(_run("r1"))
    clock.advance(seconds=1)
    await table.replace("r1", lambda run: run.model_copy(update={"status": RunStatus.RUNNING}))
    clock.advance(seconds=1)
    done = await table.replace("r1", lambda run: run.model_copy(update={"status": RunStatus.COMPLETED}))
    assert done.updated_at == T0 + timedelta(seconds=2)

    ignored = await table.replace("r1", lambda run: run.model_copy(update={"status": RunStatus.FAILED}))
    assert ignored.status is RunStatus.COMPLETED
    assert [status for status, _ in seen] == [RunStatus.QUEUED, RunStatus.RUNNING, RunStatus.COMPLETED]
    assert [count for _, count in seen] == [1, 2, 3]
    assert store.save_count == 3


@pytest.mark.asyncio
async def test_table_list_filters_and_unknown_run_raises() -> None:
    table = RunTable(InMemoryRunStore([_run("a", "lib_1", 0), _run("b", "lib_2", 1), _run("c", "lib_1", 2)]))
    table.load()
    assert [run.id for run in table.list()] == ["c", "b", "a"]
    assert [run.id for run in table.list("lib_1")] == ["c", "a"]
    with pytest.raises(RunNotFoundError):
        await table.replace("missing", lambda run: run)


class BrokenStore(InMemoryRunStore):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def save(self, runs) -> None:
        if self.broken:
            raise StorageError("read-only filesystem")
        super().save(runs)


@pytest.mark.asyncio
async def test_failed_save_rejects_running_write_but_installs_terminal() -> None:
    store = BrokenStore()
    table = RunTable(store)
    table.load()
    seen = []
    table.subscribe("r1", lambda run: seen.append(run.status))
    await table.insert(_run("r1"))

    store.broken = True
    with pytest.raises(StorageError):
        await table.replace("r1", lambda run: run.model_copy(update={"status": RunStatus.RUNNING}))
    assert table.get("r1").status is RunStatus.QUEUED

    done = await table.replace("r1", lambda run: run.model_copy(update={"status": RunStatus.FAILED}))
    assert done.status is RunStatus.FAILED
    assert table.get("r1").status is RunStatus.FAILED
    assert seen == [RunStatus.QUEUED, RunStatus.FAILED]
    assert table.unsaved is True
    assert await table.flush() is False

    store.broken = False
    assert await table.flush() is True
    assert table.unsaved is False
    assert store.load()[0].status is RunStatus.FAILED
