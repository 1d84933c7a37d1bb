"""Schedule Commands - Cron schedule management"""

import json

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..client.endpoints import JobEngineAPIError, JobEngineClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_schedules_table,
    print_error,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="schedules", help="Cron schedule management commands")


@app.command("list")
def list_schedules():
    """📋 List schedules"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            schedules = client.list_schedules().get("schedules", [])

            if not schedules:
                console.print(Panel(
                    "📭 [yellow]No schedules registered.[/yellow]\n\n"
                    "Create one with:\n"
                    "[cyan]jobengine schedules create nightly '0 3 * * *' maintenance-cleanup[/cyan]",
                    title="Empty Results",
                    border_style="yellow",
                ))
                return

            console.print(create_schedules_table(schedules))

    except JobEngineAPIError as e:
        print_error(f"Failed to list schedules: {e}")
        raise typer.Exit(1) from None


@app.command("show")
def show_schedule(name: str = typer.Argument(..., help="Schedule name")):
    """🔍 Show one schedule"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            schedule = client.get_schedule(name)
            console.print(create_schedules_table([schedule]))
            if schedule.get("job_payload"):
                console.print(f"📦 Payload: {json.dumps(schedule['job_payload'])}", markup=False)

    except JobEngineAPIError as e:
        print_error(f"Failed to get schedule: {e}")
        raise typer.Exit(1) from None


@app.command("create")
def create_schedule(
    name: str = typer.Argument(..., help="Schedule name"),
    cron_expression: str = typer.Argument(..., help="Five-field cron expression"),
    job_name: str = typer.Argument(..., help="Job to enqueue on every fire"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    timezone: str | None = typer.Option(None, "--timezone", "-z", help="IANA timezone"),
    disabled: bool = typer.Option(False, "--disabled", help="Create the schedule disabled"),
):
    """➕ Create a job-backed schedule"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload must be valid JSON: {e}")
        raise typer.Exit(1) from None

    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            schedule = client.create_schedule(
                name,
                cron_expression,
                job_name,
                payload=payload_data,
                timezone=timezone,
                enabled=not disabled,
            )
            print_success(f"Schedule '{name}' created, next run {schedule.get('next_run')}")

    except JobEngineAPIError as e:
        print_error(f"Failed to create schedule: {e}")
        raise typer.Exit(1) from None


@app.command("delete")
def delete_schedule(
    name: str = typer.Argument(..., help="Schedule name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🗑️ Delete a schedule"""
    if not yes and not Confirm.ask(f"Delete schedule '{name}'?"):
        console.print("Delete cancelled.")
        return

    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            client.delete_schedule(name)
            print_success(f"Schedule '{name}' deleted")

    except JobEngineAPIError as e:
        print_error(f"Failed to delete schedule: {e}")
        raise typer.Exit(1) from None


@app.command("trigger")
def trigger_schedule(name: str = typer.Argument(..., help="Schedule name")):
    """▶️ Run a schedule now"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            schedule = client.trigger_schedule(name)
            if schedule.get("last_error"):
                print_warning(f"Schedule '{name}' ran with error: {schedule['last_error']}")
            else:
                print_success(f"Schedule '{name}' triggered (run {schedule.get('run_count')})")

    except JobEngineAPIError as e:
        print_error(f"Failed to trigger schedule: {e}")
        raise typer.Exit(1) from None


@app.command("enable")
def enable_schedule(name: str = typer.Argument(..., help="Schedule name")):
    """✅ Enable a schedule"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            client.enable_schedule(name)
            print_success(f"Schedule '{name}' enabled")

    except JobEngineAPIError as e:
        print_error(f"Failed to enable schedule: {e}")
        raise typer.Exit(1) from None


@app.command("disable")
def disable_schedule(name: str = typer.Argument(..., help="Schedule name")):
    """⏸️ Disable a schedule"""
    base_url = config.get("api.base_url")

    try:
        with JobEngineClient(base_url) as client:
            client.disable_schedule(name)
            print_success(f"Schedule '{name}' disabled")

    except JobEngineAPIError as e:
        print_error(f"Failed to disable schedule: {e}")
        raise typer.Exit(1) from None
