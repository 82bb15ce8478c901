from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime
from typing import Optional

import typer
from loguru import logger
from prometheus_client import start_http_server

from .config import get_settings
from .coordinator import DeadLetterQueue
from .models import CallLogEntry
from .reports import build_report
from .runtime import build_runtime
from .store import PgCallStore

app = typer.Typer(help="call-sync operational CLI")
dlq_app = typer.Typer(help="Inspect and requeue dead-lettered sink writes")
app.add_typer(dlq_app, name="dlq")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", envvar="CALL_SYNC_LOG_LEVEL"),
    metrics_port: Optional[int] = typer.Option(
        None, "--metrics-port", help="Expose Prometheus metrics on this port"
    ),
):
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())
    port = metrics_port or get_settings().METRICS_PORT
    if port:
        start_http_server(port)
        logger.info(f"Metrics exposed on :{port}")


def _require_provider(runtime) -> None:
    if runtime.poller is None:
        raise typer.BadParameter("CALL_SYNC_STATUS_API_KEY must be set to reconcile call status")


# ---------------------------
# Write path
# ---------------------------


@app.command("log-call")
def log_call(
    call_id: str = typer.Argument(...),
    user_id: Optional[str] = typer.Option(None, "--user-id"),
    phone_number: Optional[str] = typer.Option(None, "--phone"),
    status: str = typer.Option("initiated", "--status"),
):
    """Append one call to the call log and flush it."""

    async def _run():
        runtime = build_runtime(get_settings())
        try:
            entry = CallLogEntry(
                call_id=call_id, user_id=user_id, phone_number=phone_number, status=status
            )
            result = await runtime.writer.log_call(entry)
        finally:
            await runtime.aclose()
        typer.echo(json.dumps({"accepted": result.accepted, "batched": result.batched}))

    asyncio.run(_run())


# ---------------------------
# Reconciliation
# ---------------------------


@app.command("poll")
def poll():
    """Run one reconciliation cycle."""

    async def _run():
        runtime = build_runtime(get_settings())
        try:
            _require_provider(runtime)
            changed = await runtime.poller.poll_call_updates()
        finally:
            await runtime.aclose()
        typer.echo(json.dumps({"changed": changed}))

    asyncio.run(_run())


@app.command("watch")
def watch(
    interval: Optional[float] = typer.Option(
        None, "--interval", help="Seconds between cycles (default: CALL_SYNC_POLL_INTERVAL_SEC)"
    ),
):
    """Reconcile on an interval until interrupted."""
    settings = get_settings()
    every = interval or settings.POLL_INTERVAL_SEC

    async def _run():
        runtime = build_runtime(settings)
        try:
            _require_provider(runtime)
            await runtime.poller.run_forever(every)
        finally:
            await runtime.aclose()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


# ---------------------------
# Reports
# ---------------------------


@app.command("report")
def report(
    start: Optional[datetime] = typer.Option(None, "--start"),
    end: Optional[datetime] = typer.Option(None, "--end"),
    user_id: Optional[str] = typer.Option(None, "--user-id"),
):
    """Summarize the call log (totals, minutes, calls per status)."""

    async def _run():
        runtime = build_runtime(get_settings())
        try:
            rep = await build_report(runtime.writer, start, end, user_id)
        finally:
            await runtime.aclose()
        typer.echo(rep.model_dump_json(indent=2))

    asyncio.run(_run())


# ---------------------------
# Dead letters
# ---------------------------


def _dlq_path(path: Optional[str]) -> str:
    resolved = path or get_settings().DLQ_PATH
    if not resolved:
        raise typer.BadParameter("pass --path or set CALL_SYNC_DLQ_PATH")
    return resolved


@dlq_app.command("list")
def dlq_list(
    path: Optional[str] = typer.Option(None, "--path"),
    max_records: int = typer.Option(100, "--max"),
):
    dlq = DeadLetterQueue(_dlq_path(path), mkdirs=False)
    for rec in asyncio.run(dlq.replay(max_records)):
        typer.echo(
            json.dumps(
                {
                    "ts": rec.ts,
                    "sink_key": rec.sink_key,
                    "kind": rec.operation_kind,
                    "retry_count": rec.retry_count,
                    "reason": rec.reason,
                    "operations": len(rec.operations),
                }
            )
        )


@dlq_app.command("requeue")
def dlq_requeue(
    path: Optional[str] = typer.Option(None, "--path"),
    max_records: int = typer.Option(100, "--max"),
    timeout: float = typer.Option(300.0, "--timeout", help="Seconds to wait for the replay"),
):
    """Feed dead-lettered writes back through the retry queue."""
    dlq = DeadLetterQueue(_dlq_path(path), mkdirs=False)

    async def _run():
        records = await dlq.replay(max_records)
        runtime = build_runtime(get_settings())
        try:
            for rec in records:
                runtime.retry_queue.enqueue(rec.to_retry_item())
            await runtime.retry_queue.drain(timeout)
        finally:
            await runtime.aclose()
        return len(records)

    n = asyncio.run(_run())
    typer.echo(json.dumps({"requeued": n}))


# ---------------------------
# Database
# ---------------------------


@app.command("init-db")
def init_db(dsn: Optional[str] = typer.Option(None, "--dsn", envvar="CALL_SYNC_DATABASE_URL")):
    """Create the calls table if it does not exist."""
    if not dsn:
        raise typer.BadParameter("pass --dsn or set CALL_SYNC_DATABASE_URL")

    async def _run():
        store = PgCallStore({"dsn": dsn})
        try:
            await store.init_schema()
        finally:
            await store.aclose()

    asyncio.run(_run())
    logger.success("Schema ready")


if __name__ == "__main__":
    app()
