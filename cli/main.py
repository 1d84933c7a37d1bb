"""Job Engine CLI - Main Entry Point"""

import asyncio
import importlib
import signal
from collections.abc import Callable
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

# Import command modules
from .commands import config, jobs, schedules
from .utils.formatting import print_error, print_info, print_success
from .utils.config_manager import config as config_manager
from .client.endpoints import JobEngineAPIError, JobEngineClient

console = Console()

# Create main Typer app
app = typer.Typer(
    name="jobengine",
    help="⚙️ Job Engine - Background job queue and cron scheduler CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(schedules.app, name="schedules")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check system status and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobEngineClient(base_url) as client:
            health = client.health_check()
            worker = health.get("worker") or {}

            console.print(Panel(
                f"🚀 [green]Connected Successfully![/green]\n\n"
                f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
                f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
                f"• Queue running: [cyan]{worker.get('running', False)}[/cyan]\n"
                f"• Queue depth: [cyan]{worker.get('queue_depth', 0)}[/cyan]\n"
                f"• API URL: [blue]{base_url}[/blue]",
                title="System Status",
                border_style="green"
            ))

    except JobEngineAPIError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Job Engine API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]jobengine config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(Panel(
        f"⚙️ [bold cyan]Job Engine CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]\n"
        f"• Type: [yellow]Command Line Interface[/yellow]",
        title="Version Info",
        border_style="cyan"
    ))


@app.command()
def quickstart():
    """🚀 Quick start guide"""
    console.print(Panel(
        "⚙️ [bold cyan]Job Engine Quick Start[/bold cyan]\n\n"
        "[bold]1. Start a worker[/bold]\n"
        "   [dim]jobengine worker --concurrency 5[/dim]\n\n"
        "[bold]2. Check Status[/bold]\n"
        "   [dim]jobengine status[/dim]\n\n"
        "[bold]3. Enqueue a Job[/bold]\n"
        "   [dim]jobengine jobs add process-webhook --payload '{\"url\": \"https://example.com\"}'[/dim]\n\n"
        "[bold]4. Schedule a Job[/bold]\n"
        "   [dim]jobengine schedules create nightly '0 3 * * *' maintenance-cleanup[/dim]\n\n"
        "[bold]5. Inspect the Queue[/bold]\n"
        "   [dim]jobengine jobs stats[/dim]\n\n"
        "[bold yellow]Tip:[/bold yellow] Use [cyan]--help[/cyan] with any command for more options!",
        title="Quick Start Guide",
        border_style="green"
    ))


def _load_hook(target: str) -> Callable:
    """Resolve 'package.module:function'."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"Expected 'module:function', got '{target}'")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


async def _run_worker(
    concurrency: int | None,
    poll_interval_ms: int | None,
    hooks: list[Callable],
    drain_timeout_s: float,
) -> None:
    from jobengine.config.settings import settings
    from jobengine.services import BackgroundServices

    services = await BackgroundServices.create(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still stops the worker
            pass

    try:
        if concurrency is not None:
            services.queue.set_max_concurrency(concurrency)
        if poll_interval_ms is not None:
            services.queue.set_poll_interval(poll_interval_ms)
        for hook in hooks:
            hook(services.queue)

        await services.start()
        print_success(
            f"Worker {services.queue.worker_id} running "
            f"({', '.join(sorted(services.queue.registry.list()))})"
        )
        await stop.wait()
        print_info("Shutting down worker...")
    finally:
        await services.close(drain_timeout_s=drain_timeout_s)


@app.command()
def worker(
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", help="Maximum concurrent jobs"
    ),
    poll_interval_ms: Optional[int] = typer.Option(
        None, "--poll-interval-ms", help="Delay between poll ticks"
    ),
    handlers: list[str] = typer.Option(
        [], "--handlers", "-H", help="module:function called with the JobQueue to register handlers"
    ),
    drain_timeout_s: float = typer.Option(
        30.0, "--drain-timeout", help="Seconds to wait for running jobs on shutdown"
    ),
):
    """👷 Run the job queue and scheduler in this process"""
    from jobengine.config.logging import setup_logging
    from jobengine.v1.core.exceptions import JobEngineError

    setup_logging()
    hooks = [_load_hook(target) for target in handlers]

    try:
        asyncio.run(_run_worker(concurrency, poll_interval_ms, hooks, drain_timeout_s))
    except KeyboardInterrupt:
        print_info("Worker interrupted")
    except JobEngineError as e:
        print_error(f"Worker failed: {e.message}")
        raise typer.Exit(1) from None


def _version_callback(value: bool):
    if value:
        from . import __version__
        console.print(f"Job Engine CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """
    ⚙️ Job Engine CLI

    Inspect and manage the job queue and cron schedules of a running
    Job Engine API, or run a worker process.
    """


if __name__ == "__main__":
    app()
