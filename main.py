"""CLI entrypoint for research runs: serve the API, run in-process, or watch a remote run."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from client import HttpRunFetcher, RunPollSupervisor, format_run_summary
from config import get_poll_settings, get_research_settings
from orchestrator import JsonFileRunStore, RunRegistry, RunTable
from utils import setup_logger
from webapp.runtime import get_credential_store


LOG_NAMESPACES = ("orchestrator", "sources", "intelligence", "client", "webapp")


def _json(text: str):
    raw = str(text or "").strip()
    if not raw:
        return {}
    return json.loads(raw)


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


async def _research(args: argparse.Namespace) -> None:
    registry = RunRegistry()
    provider = _json(args.provider_json)
    credentials = get_credential_store().credentials_for(provider.get("llm_provider"))
    run = await registry.create(
        args.library_id,
        args.query,
        args.context,
        budget=_json(args.budget_json),
        provider_config=provider,
        credentials=credentials,
    )
    print(f"Started run {run.id}")
    try:
        final = await registry.wait(run.id)
    except (KeyboardInterrupt, asyncio.CancelledError):
        await registry.cancel(run.id)
        final = await registry.wait(run.id)
    print(format_run_summary(final))


def _read_table() -> RunTable:
    table = RunTable(JsonFileRunStore(get_research_settings().runs_file))
    table.load()
    return table


async def _list(args: argparse.Namespace) -> None:
    runs = _read_table().list(args.library_id or None)
    _print_json({"runs": [run.model_dump(mode="json") for run in runs]})


async def _status(args: argparse.Namespace) -> None:
    run = _read_table().get(args.run_id)
    _print_json({"run": run.model_dump(mode="json") if run else None})


async def _watch(args: argparse.Namespace) -> None:
    settings = get_poll_settings()
    fetcher = HttpRunFetcher(args.base_url or settings.base_url)
    try:
        run = await fetcher(args.run_id)
        supervisor = RunPollSupervisor(
            run,
            fetcher,
            on_update=lambda latest: print(f"{latest.status.value} ({latest.phase.value})"),
        )
        outcome = await supervisor.run()
        print(outcome.message or f"Stopped watching {run.id}")
    finally:
        await fetcher.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Research runs CLI")
    parser.add_argument("--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    research = sub.add_parser("research")
    research.add_argument("--library-id", required=True)
    research.add_argument("--query", required=True)
    research.add_argument("--context", default="")
    research.add_argument("--budget-json", default="{}")
    research.add_argument("--provider-json", default="{}")

    listing = sub.add_parser("list")
    listing.add_argument("--library-id", default="")

    status = sub.add_parser("status")
    status.add_argument("--run-id", required=True)

    watch = sub.add_parser("watch")
    watch.add_argument("--run-id", required=True)
    watch.add_argument("--base-url", default="")

    args = parser.parse_args()
    level = logging.DEBUG if args.verbose else logging.INFO
    for name in LOG_NAMESPACES:
        setup_logger(name, level=level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("webapp.app:app", host=args.host, port=int(args.port))
        return

    handlers = {
        "research": _research,
        "list": _list,
        "status": _status,
        "watch": _watch,
    }
    asyncio.run(handlers[args.command](args))


if __name__ == "__main__":
    main()
