"""
Command-line administrative interface.

Thin wrappers over JobRepository, ConfigRepository, the worker loop and the
reaper. Every command opens the configured store, creating tables and
default config on first use.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, TypeVar

import click
from pydantic import ValidationError as PydanticValidationError

from queuectl import __version__
from queuectl.constants import JobState
from queuectl.db import close_db, create_schema, get_session_context, init_db
from queuectl.db.config_repository import ConfigRepository
from queuectl.db.repository import JobRepository
from queuectl.errors import QueueError
from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import get_metrics
from queuectl.types.api import EnqueueJobRequest
from queuectl.utils import utcnow

T = TypeVar("T")


def _run(func: Callable[[], Awaitable[T]]) -> T:
    """Open the store, run ``func`` and close the store."""

    async def runner() -> T:
        await init_db()
        try:
            await create_schema()
            return await func()
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except QueueError as e:
        raise click.ClickException(str(e)) from e


def _parse_job_arg(raw: str) -> EnqueueJobRequest:
    """Accept either a JSON object or a raw command string."""
    if not raw.strip().startswith("{"):
        fields: Any = {"command": raw}
    else:
        try:
            fields = json.loads(raw)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"Invalid JSON: {e}") from e
        if not isinstance(fields, dict):
            raise click.BadParameter("Job JSON must be an object")

    try:
        return EnqueueJobRequest.model_validate(fields)
    except PydanticValidationError as e:
        raise click.BadParameter(str(e)) from e


def _format_dt(value) -> str:
    return value.isoformat(sep=" ", timespec="seconds") if value else "-"


@click.group(help="queuectl - persistent background job queue")
@click.version_option(__version__, prog_name="queuectl")
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.option(
    "--log-format",
    type=click.Choice(["json", "console"]),
    default=None,
    help="Override the configured log format.",
)
def cli(log_level: str | None, log_format: str | None) -> None:
    setup_logging(log_level=log_level, log_format=log_format)


@cli.command("init", help="Create tables and seed default config.")
def init_cmd() -> None:
    async def noop() -> None:
        return None

    _run(noop)
    click.echo("Store initialized.")


@cli.command("enqueue", help="Enqueue a job from JSON or a plain command string.")
@click.argument("job")
@click.option("--id", "job_id", default=None, help="Job id (overrides the JSON id).")
@click.option("--max-retries", type=click.IntRange(min=0), default=None, help="Per-job retry ceiling.")
@click.option("--delay", type=click.FloatRange(min=0), default=None, help="Seconds before the job may run.")
def enqueue_cmd(job: str, job_id: str | None, max_retries: int | None, delay: float | None) -> None:
    request = _parse_job_arg(job)
    run_after = utcnow() + timedelta(seconds=delay) if delay else request.run_after

    async def enqueue():
        async with get_session_context() as session:
            return await JobRepository(session).enqueue(
                command=request.command,
                job_id=job_id or request.id,
                max_retries=max_retries if max_retries is not None else request.max_retries,
                run_after=run_after,
            )

    created = _run(enqueue)
    get_metrics().record_job_enqueued()
    click.echo(f"Enqueued: {created.id}")


@cli.command("list", help="List jobs, most recent first.")
@click.option(
    "--state",
    type=click.Choice([s.value for s in JobState]),
    default=None,
    help="Only show jobs in this state.",
)
@click.option("--limit", type=click.IntRange(min=1), default=None)
def list_cmd(state: str | None, limit: int | None) -> None:
    async def list_jobs():
        async with get_session_context() as session:
            return await JobRepository(session).list_jobs(
                state=JobState(state) if state else None, limit=limit
            )

    jobs = _run(list_jobs)
    if not jobs:
        click.echo("No jobs found.")
        return

    click.echo(f"{'ID':<42} {'STATE':<11} {'ATTEMPTS':>8}  {'RUN AFTER':<19}  COMMAND")
    for job in jobs:
        click.echo(
            f"{job.id:<42} {job.state.value:<11} {job.attempts:>3}/{job.max_retries:<4}  "
            f"{_format_dt(job.run_after):<19}  {job.command}"
        )


@cli.command("status", help="Show job counts by state.")
def status_cmd() -> None:
    async def stats():
        async with get_session_context() as session:
            return await JobRepository(session).get_job_stats()

    counts = _run(stats)
    for state, count in counts.items():
        click.echo(f"{state:<11} {count}")


@cli.group("worker", help="Run workers.")
def worker_group() -> None:
    pass


@worker_group.command("start", help="Start workers in this process. Stop with Ctrl+C or SIGTERM.")
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True)
def worker_start_cmd(count: int) -> None:
    from queuectl.worker.main import run_async

    click.echo(f"Starting {count} worker(s). Press Ctrl+C to stop.")
    try:
        asyncio.run(run_async(count))
    except QueueError as e:
        raise click.ClickException(str(e)) from e
    click.echo("Workers stopped.")


@cli.group("dlq", help="Dead letter queue management.")
def dlq_group() -> None:
    pass


@dlq_group.command("list", help="List dead letter entries.")
def dlq_list_cmd() -> None:
    async def list_entries():
        async with get_session_context() as session:
            return await JobRepository(session).list_dead_letters()

    entries = _run(list_entries)
    if not entries:
        click.echo("DLQ is empty.")
        return

    for entry in entries:
        click.echo(
            f"{entry.id}  attempts={entry.attempts}/{entry.max_retries}  "
            f"failed_at={_format_dt(entry.failed_at)}  command={entry.command}"
        )
        if entry.last_error:
            click.echo(f"    last_error: {entry.last_error}")


@dlq_group.command("retry", help="Move a dead letter entry back into the queue.")
@click.argument("job_id")
def dlq_retry_cmd(job_id: str) -> None:
    async def retry():
        async with get_session_context() as session:
            return await JobRepository(session).retry_dead_letter(job_id)

    job = _run(retry)
    get_metrics().record_dead_letter_retried()
    click.echo(f"Requeued: {job.id} (attempts={job.attempts})")


@cli.group("config", help="Runtime configuration (backoff_base, base_delay_seconds, max_retries).")
def config_group() -> None:
    pass


@config_group.command("get")
@click.argument("key")
def config_get_cmd(key: str) -> None:
    async def get():
        async with get_session_context() as session:
            return await ConfigRepository(session).get(key)

    value = _run(get)
    if value is None:
        raise click.ClickException(f"Config key '{key}' not set")
    click.echo(value)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set_cmd(key: str, value: str) -> None:
    async def set_value():
        async with get_session_context() as session:
            await ConfigRepository(session).set(key, value)

    _run(set_value)
    click.echo(f"Set {key} = {value}")


@config_group.command("list")
def config_list_cmd() -> None:
    async def list_values():
        async with get_session_context() as session:
            return await ConfigRepository(session).list_all()

    for key, value in _run(list_values).items():
        click.echo(f"{key} = {value}")


@cli.command("reaper", help="Return jobs stuck in processing to pending.")
@click.option(
    "--stale-after",
    type=click.FloatRange(min=1),
    default=None,
    help="Lock age in seconds after which a job is recovered.",
)
@click.option("--once", is_flag=True, help="Run a single pass and exit.")
def reaper_cmd(stale_after: float | None, once: bool) -> None:
    from queuectl.reaper.main import Reaper, run_async

    if not once:
        asyncio.run(run_async(stale_after_seconds=stale_after))
        return

    async def run_once():
        return await Reaper(stale_after_seconds=stale_after).run_once()

    click.echo(f"Recovered {_run(run_once)} job(s).")


@cli.command("serve", help="Run the administrative HTTP API.")
@click.option("--host", default=None)
@click.option("--port", type=int, default=None)
def serve_cmd(host: str | None, port: int | None) -> None:
    from queuectl.api.main import run

    run(host=host, port=port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
