"""FastAPI surface for research runs."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from core import RunRecord
from utils.exceptions import ResearchError, RunNotFoundError, RunValidationError
from webapp import runtime


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    registry = runtime.get_registry()
    await registry.start()
    logger.info("research_api_started")
    try:
        yield
    finally:
        await registry.aclose()


app = FastAPI(title="Research Runs API", lifespan=lifespan)


class BudgetPayload(BaseModel):
    max_usd: Optional[float] = None
    max_input_tokens: Optional[int] = None
    max_output_tokens: Optional[int] = None
    max_minutes: Optional[float] = None
    max_sources: Optional[int] = None


class ProviderConfigPayload(BaseModel):
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None
    search_enabled: Optional[bool] = None


class CreateRunPayload(BaseModel):
    library_id: str = ""
    query: str = ""
    context: str = ""
    budget: BudgetPayload = Field(default_factory=BudgetPayload)
    provider_config: ProviderConfigPayload = Field(default_factory=ProviderConfigPayload)

    @field_validator("library_id", "query", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()


def _run_json(run: RunRecord) -> Dict[str, Any]:
    return run.model_dump(mode="json")


def _sse(event: str, data: Dict[str, Any]) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {payload}\n\n"


@app.exception_handler(RunValidationError)
async def _validation_error(_request, exc: RunValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(RunNotFoundError)
async def _not_found(_request, exc: RunNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ResearchError)
async def _research_error(_request, exc: ResearchError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": exc.message})


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


@app.post("/api/research/runs", status_code=201)
async def create_run(payload: CreateRunPayload) -> Dict[str, Any]:
    registry = runtime.get_registry()
    budget = payload.budget.model_dump(exclude_none=True)
    provider = payload.provider_config.model_dump(exclude_none=True)
    credentials = runtime.get_credential_store().credentials_for(provider.get("llm_provider"))
    run = await registry.create(
        payload.library_id,
        payload.query,
        payload.context,
        budget=budget,
        provider_config=provider,
        credentials=credentials,
    )
    return {"run": _run_json(run)}


@app.get("/api/research/runs")
async def list_runs(library_id: Optional[str] = None) -> Dict[str, Any]:
    runs = await runtime.get_registry().list(library_id)
    return {"runs": [_run_json(run) for run in runs]}


@app.get("/api/research/runs/{run_id}")
async def get_run(run_id: str) -> Dict[str, Any]:
    run = await runtime.get_registry().get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Research run not found.")
    return {"run": _run_json(run)}


@app.post("/api/research/runs/{run_id}/cancel")
async def cancel_run(run_id: str) -> Dict[str, Any]:
    run = await runtime.get_registry().cancel(run_id)
    return {"run": _run_json(run)}


@app.get("/api/research/runs/{run_id}/events")
async def run_events(run_id: str) -> StreamingResponse:
    registry = runtime.get_registry()
    if await registry.get(run_id) is None:
        raise HTTPException(status_code=404, detail="Research run not found.")

    async def _event_stream() -> AsyncIterator[str]:
        async for run in registry.stream(run_id):
            yield _sse("run", _run_json(run))

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(_event_stream(), media_type="text/event-stream", headers=headers)
