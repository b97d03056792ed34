from __future__ import annotations

import json
import logging
import os
import time
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from mentor.config import get_settings
from mentor.db import current_db_path, init_db, session_scope
from mentor.push import get_push_client
from mentor.reminders import JobReport, check_due_tasks, check_warming_chips, run_job

app = typer.Typer(help="Mentee progression and outcome ledger")
console = Console()


class JobName(str, Enum):
    warming_chips = "warming-chips"
    due_tasks = "due-tasks"


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db_path: str | None = typer.Option(
        None, "--db-path", help="SQLite database file (overrides MENTOR_DB_PATH).",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if db_path:
        os.environ["MENTOR_DB_PATH"] = str(Path(db_path).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or "-"
    return str(value)


def _print(title: str, payload: dict[str, Any], ctx: typer.Context, *, ok: bool = True) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        table.add_row(key, _format_scalar(value))
    console.print(Panel(table, title=title, border_style="cyan" if ok else "red"))


@app.command("init-db")
def init_db_command(ctx: typer.Context) -> None:
    """Create tables and seed the default onboarding catalog."""
    init_db()
    _print("init-db", {"status": "ok", "database_path": str(current_db_path())}, ctx)


@app.command("run-job")
def run_job_command(
    ctx: typer.Context,
    name: JobName = typer.Argument(..., help="Job to run."),
) -> None:
    """Run one scheduled reminder job. Invoked by the external scheduler."""
    settings = get_settings()
    init_db()
    push = get_push_client()
    job = {
        JobName.warming_chips: partial(check_warming_chips, push=push),
        JobName.due_tasks: partial(check_due_tasks, push=push),
    }[name]

    started = time.perf_counter()
    try:
        with session_scope() as session:
            report: JobReport = run_job(name.value, job, session)
    finally:
        close = getattr(push, "close", None)
        if close:
            close()
    elapsed = time.perf_counter() - started

    _print(
        f"run-job {name.value}",
        {
            "ok": report.ok, "matched": report.matched, "notified": report.notified,
            "skipped": report.skipped, "notified_ids": report.notified_ids,
            "error": report.error, "timezone": settings.timezone,
            "elapsed_seconds": round(elapsed, 2),
        },
        ctx,
        ok=report.ok,
    )
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8001, help="Bind port."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn
    uvicorn.run("mentor.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
