import json
import click

from .config import pid_dir
from .db import init_db, connect_db
from .errors import DuplicateIdError, QueueError
from .models import STATES
from .registry import WorkerRegistry
from .repository import (
    enqueue_job, parse_payload, list_jobs, count_by_state, dlq_list, dlq_retry,
    get_config, get_all_config, set_config, LIST_ALL, DEFAULT_LIST_LIMIT,
)
from .supervisor import start_workers, stop_workers


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    raise SystemExit(1)


def _print_jobs(rows, empty: str):
    if not rows:
        click.echo(empty)
        return
    for r in rows:
        click.echo(
            f"{r.id:>20} | {r.state:<10} | attempts={r.attempts}/{r.max_retries} "
            f"| run_at={r.run_at} | updated={r.updated_at} | cmd={r.command} | error={r.error}"
        )


@click.group(help="queuectl — background job queue CLI")
def cli():
    # Ensure DB/schema exist before any command runs
    try:
        init_db()
    except QueueError as e:
        _fail(str(e))


# ---------- Enqueue ----------
@cli.command("enqueue", help='Add a new job, e.g. \'{"id":"job1","command":"sleep 2"}\'')
@click.argument("job_json")
def enqueue_cmd(job_json):
    conn = connect_db()
    try:
        job = enqueue_job(conn, parse_payload(job_json))
        click.secho(f"Job enqueued: {job.id} -> `{job.command}` (max_retries={job.max_retries})", fg="green")
    except DuplicateIdError as e:
        _fail(f"A job with ID \"{e.job_id}\" already exists.")
    except (ValueError, RuntimeError) as e:
        _fail(f"Could not enqueue job: {e}")
    finally:
        conn.close()


# ---------- Workers ----------
@cli.group("worker", help="Manage workers")
def worker_group():
    pass


@worker_group.command("start")
@click.option("--count", "-c", type=int, default=1, show_default=True, help="Number of worker processes")
def worker_start(count):
    try:
        pids = start_workers(count)
    except (ValueError, OSError) as e:
        _fail(str(e))
    for pid in pids:
        click.secho(f"Started worker with PID: {pid}", fg="cyan")


@worker_group.command("stop", help="Ask all running workers to shut down gracefully")
def worker_stop():
    report = stop_workers()
    if not report.signalled and not report.stale:
        click.echo("No workers to stop.")
        return
    for pid in report.signalled:
        click.secho(f"Sent SIGTERM to worker {pid}", fg="yellow")
    for pid in report.stale:
        click.echo(f"Removed stale marker for worker {pid}")


# ---------- Jobs ----------
@cli.command("list")
@click.option("--state", "-s", type=click.Choice(list(STATES) + [LIST_ALL]), default=LIST_ALL, show_default=True)
@click.option("--limit", type=click.IntRange(min=1), default=DEFAULT_LIST_LIMIT, show_default=True)
def list_cmd(state, limit):
    conn = connect_db()
    try:
        rows = list_jobs(conn, state=state, limit=limit)
    finally:
        conn.close()

    suffix = "" if state == LIST_ALL else f' with state "{state}"'
    _print_jobs(rows, f"No jobs found{suffix}.")


@cli.command("status", help="Job counts by state and active workers")
def status_cmd():
    conn = connect_db()
    try:
        counts = count_by_state(conn)
    finally:
        conn.close()
    workers = WorkerRegistry(pid_dir()).list_live()
    click.echo(json.dumps({"jobs": counts, "workers": workers}, indent=2))


# ---------- DLQ ----------
@cli.group("dlq", help="Dead Letter Queue")
def dlq_group():
    pass


@dlq_group.command("list")
def dlq_list_cmd():
    conn = connect_db()
    try:
        rows = dlq_list(conn)
    finally:
        conn.close()
    _print_jobs(rows, "DLQ is empty.")


@dlq_group.command("retry")
@click.argument("job_id")
def dlq_retry_cmd(job_id):
    conn = connect_db()
    try:
        if dlq_retry(conn, job_id):
            click.secho(f"Job {job_id} re-queued from DLQ.", fg="green")
        else:
            _fail(f"Job {job_id} not found in DLQ.")
    except (ValueError, RuntimeError) as e:
        _fail(str(e))
    finally:
        conn.close()


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.argument("key", required=False)
def config_get(key):
    conn = connect_db()
    try:
        if key is None:
            click.echo(json.dumps(get_all_config(conn), indent=2))
            return
        value = get_config(conn, key)
    finally:
        conn.close()
    if value is None:
        _fail(f"Config key {key!r} is not set.")
    click.echo(value)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set_cmd(key, value):
    conn = connect_db()
    try:
        set_config(conn, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except (ValueError, RuntimeError) as e:
        _fail(str(e))
    finally:
        conn.close()


def main():
    cli()
