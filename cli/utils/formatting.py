"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "blue",
    "running": "cyan",
    "retrying": "yellow",
    "completed": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _status(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def _short_time(value: str | None) -> str:
    # ISO timestamps trimmed to seconds
    return value[:19].replace("T", " ") if value else "—"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for the jobs list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Name", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Priority", justify="right", style="yellow")
    table.add_column("Attempts", justify="center")
    table.add_column("Due", justify="center", style="blue")
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        error = job.get("error") or ""
        table.add_row(
            job.get("id", "")[:8],  # Short ID
            job.get("name", ""),
            _status(job.get("status", "")),
            str(job.get("priority", 0)),
            f"{job.get('attempts', 0)}/{job.get('max_retries', 0) + 1}",
            _short_time(job.get("scheduled_for") or job.get("created_at")),
            error[:40] + "..." if len(error) > 40 else (error or "—"),
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create a detail panel for one job"""
    content = f"""
🆔 [bold]ID:[/bold] [cyan]{job.get("id", "unknown")}[/cyan]
📝 [bold]Name:[/bold] [magenta]{job.get("name", "unknown")}[/magenta]
✅ [bold]Status:[/bold] {_status(job.get("status", "unknown"))}
⚡ [bold]Priority:[/bold] [yellow]{job.get("priority", 0)}[/yellow]
🔁 [bold]Attempts:[/bold] {job.get("attempts", 0)} (max retries {job.get("max_retries", 0)})
📅 [bold]Created:[/bold] [blue]{_short_time(job.get("created_at"))}[/blue]
⏰ [bold]Scheduled:[/bold] [blue]{_short_time(job.get("scheduled_for"))}[/blue]
▶️ [bold]Started:[/bold] [blue]{_short_time(job.get("started_at"))}[/blue]
🏁 [bold]Finished:[/bold] [blue]{_short_time(job.get("completed_at"))}[/blue]
👷 [bold]Worker:[/bold] {job.get("claimed_by") or "—"}
"""
    if job.get("error"):
        content += f"\n❌ [bold]Error:[/bold] [red]{escape(job['error'])}[/red]\n"
    content += f"\n📦 [bold]Payload:[/bold]\n{escape(json.dumps(job.get('payload'), indent=2))}\n"
    if job.get("result") is not None:
        content += f"\n🎁 [bold]Result:[/bold]\n{escape(json.dumps(job['result'], indent=2))}\n"

    return Panel(content.strip(), title="Job Details", border_style="blue")


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    content = f"""
📊 [bold blue]Queue Statistics[/bold blue]

• Pending: [blue]{stats.get("pending", 0)}[/blue]
• Retrying: [yellow]{stats.get("retrying", 0)}[/yellow]
• Running: [cyan]{stats.get("running", 0)}[/cyan]
• Completed: [green]{stats.get("completed", 0)}[/green]
• Failed: [red]{stats.get("failed", 0)}[/red]
• Total: [bold]{stats.get("total", 0)}[/bold]
"""

    return Panel(content, title="Job Stats", border_style="green")


def create_schedules_table(schedules: list[dict[str, Any]]) -> Table:
    """Create a formatted table for schedules"""
    table = Table(title="Schedules", box=box.ROUNDED)

    table.add_column("Name", justify="left", style="cyan", no_wrap=True)
    table.add_column("Cron", justify="left", style="magenta")
    table.add_column("Timezone", justify="center")
    table.add_column("Enabled", justify="center")
    table.add_column("Job", justify="left", style="yellow")
    table.add_column("Next Run", justify="center", style="blue")
    table.add_column("Runs", justify="right")
    table.add_column("Last Error", justify="left", style="red")

    for schedule in schedules:
        enabled = schedule.get("enabled", False)
        table.add_row(
            schedule.get("name", ""),
            schedule.get("cron_expression", ""),
            schedule.get("timezone", "UTC"),
            "[green]yes[/green]" if enabled else "[red]no[/red]",
            schedule.get("job_name") or "—",
            _short_time(schedule.get("next_run")),
            str(schedule.get("run_count", 0)),
            schedule.get("last_error") or "—",
        )

    return table
