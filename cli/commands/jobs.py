"""Job Commands - Queue inspection and management"""

import json

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..client.endpoints import JobEngineAPIError, JobEngineClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Job queue management commands")


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(
        None, "--status", "-s", help="Filter by status (pending, running, retrying, completed, failed)"
    ),
    name: str | None = typer.Option(None, "--name", "-n", help="Filter by job name"),
    limit: int = typer.Option(50, "--limit", "-l", help="Number of jobs to show"),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List jobs in the queue"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            print_info(f"Fetching jobs (limit: {limit}, status: {status or 'all'})")

            jobs_data = client.list_jobs(status=status, name=name, limit=limit, offset=offset)
            jobs = jobs_data.get("jobs", [])

            if not jobs:
                console.print(Panel(
                    "📭 [yellow]No jobs found![/yellow]\n\n"
                    f"Filters applied:\n"
                    f"• Status: {status or 'any'}\n"
                    f"• Name: {name or 'any'}",
                    title="Empty Results",
                    border_style="yellow",
                ))
                return

            console.print(create_jobs_table(jobs))

            if len(jobs) == limit:
                console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")

    except JobEngineAPIError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID to show")):
    """🔍 Show detailed information about a job"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            job = client.get_job(job_id)
            console.print(create_job_panel(job))

    except JobEngineAPIError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None


@app.command("stats")
def job_stats():
    """📊 Show job counts by status"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            stats = client.get_job_stats()
            console.print(create_stats_panel(stats))

    except JobEngineAPIError as e:
        print_error(f"Failed to get stats: {e}")
        raise typer.Exit(1) from None


@app.command("add")
def add_job(
    name: str = typer.Argument(..., help="Job name (selects the handler)"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    priority: int | None = typer.Option(None, "--priority", help="Higher runs first"),
    max_retries: int | None = typer.Option(None, "--max-retries", help="Retries after the first attempt"),
    delay_ms: int | None = typer.Option(None, "--delay-ms", help="Delay before the first attempt"),
    job_id: str | None = typer.Option(None, "--id", help="Caller-chosen job ID"),
):
    """➕ Enqueue a job"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload must be valid JSON: {e}")
        raise typer.Exit(1) from None

    if not isinstance(payload_data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            result = client.add_job(
                name,
                payload_data,
                priority=priority,
                max_retries=max_retries,
                delay_ms=delay_ms,
                job_id=job_id,
            )
            print_success(f"Job enqueued: {result.get('job_id')}")

    except JobEngineAPIError as e:
        print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None


@app.command("retry")
def retry_job(job_id: str = typer.Argument(..., help="Failed job to retry")):
    """🔁 Retry a failed job"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            client.retry_job(job_id)
            print_success(f"Job {job_id} re-queued")

    except JobEngineAPIError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None


@app.command("delete")
def delete_job(
    job_id: str = typer.Argument(..., help="Job to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🗑️ Delete a job"""
    if not yes and not Confirm.ask(f"Delete job {job_id}?"):
        console.print("Delete cancelled.")
        return

    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            client.delete_job(job_id)
            print_success(f"Job {job_id} deleted")

    except JobEngineAPIError as e:
        print_error(f"Failed to delete job: {e}")
        raise typer.Exit(1) from None


@app.command("cleanup")
def cleanup_jobs(
    days_old: int | None = typer.Option(
        None, "--days", "-d", help="Reap jobs finished more than N days ago"
    ),
):
    """🧹 Delete old completed and failed jobs"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            result = client.cleanup_jobs(days_old)
            print_success(
                f"Deleted {result.get('deleted', 0)} job(s) finished before {result.get('cutoff')}"
            )

    except JobEngineAPIError as e:
        print_error(f"Failed to clean up jobs: {e}")
        raise typer.Exit(1) from None
