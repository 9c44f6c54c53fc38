import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import Settings
from .errors import JobPipeError
from .models import Job, JobStatus
from .storage import SQLiteBackend

app = typer.Typer(help="jobpipe - durable job queue with atomic claiming.")


@contextmanager
def reported_errors():
    try:
        yield
    except (JobPipeError, ValueError) as e:
        print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
    )


@app.callback()
def main(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", envvar="JOBPIPE_DB", help="Path to the jobs database"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log store operations"),
):
    _setup_logging(verbose)
    with reported_errors():
        settings = Settings.from_env()
        if db is not None:
            settings = settings.model_copy(update={"db_path": db})
        backend = SQLiteBackend.from_config(settings)
    ctx.obj = backend
    ctx.call_on_close(backend.close)


def _job_table(job: Job) -> Table:
    t = Table(title=f"Job {job.id}", show_header=False)
    t.add_column("field")
    t.add_column("value")
    t.add_row("status", job.status)
    t.add_row("class", job.class_name)
    t.add_row("type", job.type)
    t.add_row("created_at", job.created_at.isoformat())
    t.add_row("lock_uuid", job.lock_uuid or "")
    t.add_row("locked_at", job.locked_at.isoformat() if job.locked_at else "")
    t.add_row("attributes", escape(json.dumps(job.attributes, sort_keys=True)))
    return t


def _require(backend: SQLiteBackend, job_id: str) -> Job:
    job = backend.find(job_id)
    if job is None:
        print(f"[red]Not found:[/red] {job_id}")
        raise typer.Exit(1)
    return job


# -----------------------------
# Producer / worker operations
# -----------------------------
@app.command()
def enqueue(
    ctx: typer.Context,
    class_name: str = typer.Argument(..., help="Job class the attributes construct"),
    type: Optional[str] = typer.Option(None, "--type", "-t", help="Job type used for dequeue filters"),
    attr: Optional[List[str]] = typer.Option(None, "--attr", "-a", help="Attribute as key=value (repeatable)"),
    payload: Optional[str] = typer.Option(None, "--json", help="Attributes as a JSON object"),
):
    """Add a new free job to the queue."""
    attributes = {}
    if payload:
        try:
            attributes = json.loads(payload)
        except json.JSONDecodeError as e:
            raise typer.BadParameter(f"Invalid JSON: {e.msg}")
        if not isinstance(attributes, dict):
            raise typer.BadParameter("--json must be a JSON object")
    for item in attr or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {item!r}")
        attributes[key] = value
    attributes["className"] = class_name
    if type is not None:
        attributes["type"] = type

    with reported_errors():
        job = ctx.obj.enqueue(attributes)
    print(f"[green]Enqueued[/green] job [bold]{job.id}[/bold]")


@app.command()
def dequeue(
    ctx: typer.Context,
    only: Optional[List[str]] = typer.Option(None, "--only", help="Claim only these types (repeatable)"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", help="Claim any type except these (repeatable)"),
):
    """Claim the oldest free job."""
    if only and exclude:
        raise typer.BadParameter("Use either --only or --exclude, not both.")
    options = {}
    if only:
        options["only"] = only
    elif exclude:
        options["exclude"] = exclude

    with reported_errors():
        job = ctx.obj.dequeue(options)
    if job is None:
        print("[yellow]No job available.[/yellow]")
        return
    Console().print(_job_table(job))


@app.command()
def find(ctx: typer.Context, job_id: str):
    """Show one job."""
    with reported_errors():
        job = _require(ctx.obj, job_id)
    Console().print(_job_table(job))


@app.command()
def complete(ctx: typer.Context, job_id: str):
    """Mark a job as completed (removes it)."""
    with reported_errors():
        ctx.obj.complete(_require(ctx.obj, job_id))
    print(f"[green]Completed[/green] {job_id}")


@app.command()
def reset(
    ctx: typer.Context,
    job_id: str,
    type: Optional[str] = typer.Option(None, "--type", "-t", help="New job type"),
):
    """Release a job so it can be claimed again."""
    with reported_errors():
        attrs = _require(ctx.obj, job_id).to_attributes()
        if type is not None:
            attrs["type"] = type
        ctx.obj.reset(attrs)
    print(f"[green]Reset[/green] {job_id}")


@app.command()
def fail(
    ctx: typer.Context,
    job_id: str,
    type: Optional[str] = typer.Option(None, "--type", "-t", help="New job type"),
):
    """Park a job as failed."""
    with reported_errors():
        attrs = _require(ctx.obj, job_id).to_attributes()
        if type is not None:
            attrs["type"] = type
        ctx.obj.fail(attrs)
    print(f"[yellow]Failed[/yellow] {job_id}")


# -----------------------------
# Status & listing
# -----------------------------
@app.command()
def status(ctx: typer.Context):
    """Show job counts per status."""
    with reported_errors():
        counts = ctx.obj.counts_by_status()
    tbl = Table(title="Jobs")
    tbl.add_column("Status")
    tbl.add_column("Count")
    for name, count in counts.items():
        tbl.add_row(name, str(count))
    Console().print(tbl)


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", help="Filter by status"),
):
    """List jobs, oldest first."""
    if status is not None and status not in JobStatus.ALL:
        raise typer.BadParameter(f"status must be one of {', '.join(JobStatus.ALL)}")
    with reported_errors():
        jobs = ctx.obj.list_jobs(status)
    t = Table(title=f"Jobs{'' if not status else f' ({status})'}")
    for c in ["id", "status", "class", "type", "created_at", "locked_at"]:
        t.add_column(c)
    for job in jobs:
        t.add_row(
            job.id,
            job.status,
            job.class_name,
            job.type,
            job.created_at.isoformat(),
            job.locked_at.isoformat() if job.locked_at else "",
        )
    Console().print(t)


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation"),
):
    """Delete every job."""
    if not yes:
        typer.confirm("Delete every job in the queue?", abort=True)
    with reported_errors():
        ctx.obj.clear()
    print("[yellow]Queue cleared.[/yellow]")
