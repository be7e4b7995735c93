"""Main entry point for the YT Batch Uploader."""

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from yt_batch import __version__
from yt_batch.core.config import Settings, load_settings
from yt_batch.core.exceptions import YtBatchError
from yt_batch.core.logging import configure_logging
from yt_batch.services.backends import JsonFileBackend
from yt_batch.services.job_runner import JobRunner
from yt_batch.services.job_store import JobStore
from yt_batch.services.manifest import CsvManifestSource
from yt_batch.services.progress import summarize
from yt_batch.services.session_store import SessionStore
from yt_batch.services.youtube import GoogleCredentialProvider

app = typer.Typer(
    name="yt-batch",
    help="YT Batch Uploader - Scheduled batch uploads to YouTube",
)
console = Console()
logger = structlog.get_logger()

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file",
)


def _open_job_store(settings: Settings) -> JobStore:
    return JobStore(
        JsonFileBackend(settings.storage.queue_path),
        debounce_seconds=settings.storage.write_debounce_seconds,
    )


def _open_session_store(settings: Settings) -> SessionStore:
    return SessionStore(JsonFileBackend(settings.storage.sessions_path, key_field="sessionId"))


class Worker:
    """Background upload worker."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.running = False

        self.store = _open_job_store(settings)
        self.sessions = _open_session_store(settings)
        self.job_runner = JobRunner(
            settings=settings,
            store=self.store,
            sessions=self.sessions,
            credentials=GoogleCredentialProvider(settings.google, self.sessions),
            manifests=CsvManifestSource(),
        )

    async def start(self) -> None:
        self.running = True
        logger.info("worker_starting", version=__version__)
        await self.job_runner.start()

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        if not self.running:
            return
        logger.info("worker_stopping")
        self.running = False
        await self.job_runner.stop()


async def run_worker(settings: Settings) -> None:
    """Run the worker until interrupted."""
    worker = Worker(settings)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        asyncio.create_task(worker.stop())

    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, signal_handler)
        loop.add_signal_handler(signal.SIGTERM, signal_handler)

    try:
        await worker.start()

        # Keep running until stopped
        while worker.running:
            await asyncio.sleep(1)

    except KeyboardInterrupt:
        pass
    finally:
        await worker.stop()


@app.command()
def worker(config: Optional[Path] = ConfigOption) -> None:
    """Run the background upload worker."""
    settings = load_settings(config)
    configure_logging(settings.logging)
    asyncio.run(run_worker(settings))


@app.command()
def serve(
    config: Optional[Path] = ConfigOption,
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from yt_batch.server import create_app

    settings = load_settings(config)
    configure_logging(settings.logging)

    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
    )


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"YT Batch Uploader v{__version__}")


@app.command()
def check(config: Optional[Path] = ConfigOption) -> None:
    """Check configuration and storage."""
    console.print("[bold]YT Batch Uploader - System Check[/bold]\n")

    settings = load_settings(config)
    storage = settings.storage

    for label, path in (
        ("Job table", storage.queue_path),
        ("Session table", storage.sessions_path),
    ):
        if path.exists():
            console.print(f"[green][OK][/green] {label}: {path}")
        else:
            console.print(f"[yellow][--][/yellow] {label} not created yet: {path}")

    uploads = Path(storage.uploads_dir)
    if uploads.is_dir():
        console.print(f"[green][OK][/green] Uploads directory: {uploads}")
    else:
        console.print(f"[yellow][--][/yellow] Uploads directory missing: {uploads}")

    try:
        google = settings.google.with_credentials_file()
    except (OSError, ValueError) as e:
        console.print(f"[red][X][/red] Google credentials file unreadable: {e}")
    else:
        if google.is_configured:
            console.print("[green][OK][/green] Google OAuth client configured")
        else:
            console.print("[red][X][/red] Google OAuth client not configured")

    sessions = _open_session_store(settings)
    usable = len([s for s in sessions.get_all() if s.is_usable])
    console.print(f"[green][OK][/green] Sessions: {len(sessions)} ({usable} signed in)")

    console.print("\n[bold]Check complete[/bold]")


@app.command()
def stats(
    config: Optional[Path] = ConfigOption,
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show the job queue."""
    settings = load_settings(config)
    store = _open_job_store(settings)
    jobs = store.get_all_jobs()

    if as_json:
        console.print_json(json.dumps(store.get_queue_stats(jobs)))
        return

    table = Table(title="Jobs")
    table.add_column("Job ID")
    table.add_column("Status")
    table.add_column("Owner")
    table.add_column("Uploaded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Updated")

    for job in jobs:
        summary = summarize(job.progress)
        table.add_row(
            job.job_id,
            job.status.value,
            job.user_id or (job.session_id[:10] if job.session_id else "-"),
            str(summary.succeeded),
            str(summary.failed),
            str(summary.pending + summary.deferred),
            job.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def retry(
    job_id: str = typer.Argument(..., help="Job to retry"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """Reset failed videos of a job so the worker uploads them again."""
    settings = load_settings(config)
    store = _open_job_store(settings)

    try:
        job = store.retry_failed(job_id)
    except YtBatchError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Job {job.job_id} is {job.status.value}[/green]")


if __name__ == "__main__":
    app()
