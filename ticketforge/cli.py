"""CLI entry-point: run the server, generate tickets against it, inspect jobs."""

import asyncio
import json

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ticketforge.client import ClientError, TicketClient
from ticketforge.config import get_settings
from ticketforge.jobs import JobService, create_job_store

app = typer.Typer(help="TicketForge: asynchronous AI ticket generation")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(None, help="Port (default from PORT or 8000)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Run the FastAPI backend with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("backend.main:app", host=host, port=port or settings.port, reload=reload)


@app.command()
def generate(
    scope: str = typer.Argument(..., help="Requesting organization (scope)"),
    request_text: str = typer.Argument(..., help="Natural-language description of the request"),
    stream: bool = typer.Option(False, "--stream", help="Use the live streaming endpoint instead of polling"),
    base_url: str = typer.Option("http://localhost:8000", help="TicketForge server URL"),
    timeout: float = typer.Option(120.0, help="Global deadline in seconds"),
    poll_interval: float = typer.Option(2.0, help="Seconds between status polls"),
):
    """Generate a ticket through a running server."""
    console = Console()

    async def _run():
        async with TicketClient(base_url, global_timeout=timeout, poll_interval=poll_interval) as client:
            if stream:
                return await client.generate_streaming(scope, request_text)
            return await client.generate_polling(scope, request_text)

    mode = "streaming" if stream else "polling"
    console.print(f"Generating ticket ({mode})...")
    try:
        result = asyncio.run(_run())
    except ClientError as e:
        console.print(f"[red]Error: {e.user_message}[/red]")
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Error: could not reach {base_url} ({e})[/red]")
        raise typer.Exit(1)

    title = f"Ticket ({result.mode}" + (f", job {result.job_id}" if result.job_id else "") + ")"
    console.print(Panel(result.content, title=title))
    if result.partial:
        console.print("[yellow]Warning: partial result (generation was interrupted).[/yellow]")
    if result.metadata:
        console.print(json.dumps(result.metadata, ensure_ascii=False))
    console.print("[green]Done.[/green]")


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id (job_...)"),
    base_url: str = typer.Option("http://localhost:8000", help="TicketForge server URL"),
):
    """Show the status of a generation job."""
    console = Console()

    async def _run():
        async with TicketClient(base_url) as client:
            return await client.get_status(job_id)

    try:
        job = asyncio.run(_run())
    except ClientError as e:
        console.print(f"[red]Error: {e.user_message}[/red]")
        raise typer.Exit(1)
    except httpx.HTTPError as e:
        console.print(f"[red]Error: could not reach {base_url} ({e})[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Job {job_id}")
    table.add_column("Field")
    table.add_column("Value")
    for key in ("status", "message", "progressPercent", "errorDetail", "createdAt", "updatedAt"):
        table.add_row(key, str(job.get(key)))
    console.print(table)
    if job.get("result"):
        console.print(Panel(job["result"], title="Result"))


@app.command("sweep-stale")
def sweep_stale(
    older_than: float = typer.Option(None, help="Only processing jobs idle this many seconds (default from TF_STALE_JOB_SECONDS)"),
    all_active: bool = typer.Option(False, "--all", help="Fail every pending/processing job (server must be stopped)"),
):
    """Move abandoned processing jobs (or, with --all, every active job) to error."""
    console = Console()
    settings = get_settings()
    store = create_job_store(settings)
    # No pool: recovery never schedules work
    service = JobService(store, pool=None)
    threshold = None if all_active else (older_than or settings.tf_stale_job_seconds)
    recovered = service.recover_stale_jobs(threshold)
    if not recovered:
        console.print("No stale jobs found.")
        return
    for job_id in recovered:
        console.print(f"Marked {job_id} as error")
    console.print(f"[green]Recovered {len(recovered)} job(s).[/green]")


if __name__ == "__main__":
    app()
