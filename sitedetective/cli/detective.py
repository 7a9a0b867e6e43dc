#!/usr/bin/env python3
"""
Command line client for the site detective daemon.

Usage:
    detective ask "why is the contact button blue"   - Quick scan
    detective ask "..." --deep                       - Start a deep scan
    detective progress JOB_ID [--watch]              - Deep scan progress
    detective pause|resume|cancel JOB_ID             - Control a deep scan
    detective export JOB_ID --format csv             - Export results
    detective daemon start|stop|status               - Manage the daemon
"""

import asyncio
import os
from typing import Optional

import click
import httpx
from loguru import logger
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console()

DAEMON_URL = os.environ.get("DETECTIVE_URL", "http://localhost:8766")
TERMINAL = {"completed", "cancelled", "error"}


@click.group()
def cli():
    """Site detective: find what controls an element of your site."""


async def request(method: str, path: str, timeout: float = 10.0, **kwargs) -> Optional[httpx.Response]:
    """Call the daemon; prints connection errors and returns None."""
    try:
        async with httpx.AsyncClient() as client:
            return await client.request(method, f"{DAEMON_URL}{path}", timeout=timeout, **kwargs)
    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon. Is it running?[/red]")
        console.print("Start with: [cyan]detective daemon start[/cyan]")
    except httpx.HTTPError as e:
        console.print(f"[red]Error:[/red] {e}")
    return None


def show_error(response: httpx.Response) -> None:
    try:
        error = response.json().get("error", {})
        message = error.get("message") or error.get("code") or response.text
    except ValueError:
        message = response.text
    console.print(f"[red]Failed ({response.status_code}):[/red] {message}")


@cli.command()
@click.argument("query")
@click.option("--url", "-u", default="", help="URL of the page the element is on")
@click.option("--page-id", "-p", type=int, help="Record id of the page")
@click.option("--deep", is_flag=True, help="Start a deep scan instead")
def ask(query: str, url: str, page_id: Optional[int], deep: bool):
    """Ask where an element of the site comes from."""
    asyncio.run(ask_daemon(query, url, page_id, deep))


async def ask_daemon(query: str, url: str, page_id: Optional[int], deep: bool):
    body = {"query": query, "url": url, "page_id": page_id}
    if deep:
        response = await request("POST", "/scan/deep", json=body)
        if response is None:
            return
        if response.status_code == 202:
            data = response.json()
            console.print(f"[green]✓[/green] Deep scan {data['job_id']} ({data['status']})")
            console.print(f"[dim]{data.get('message', '')}[/dim]")
            console.print(f"Follow with: [cyan]detective progress {data['job_id']} --watch[/cyan]")
        else:
            show_error(response)
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console
    ) as progress:
        progress.add_task(description="Scanning...", total=None)
        response = await request("POST", "/scan/quick", json=body, timeout=60.0)

    if response is None:
        return
    if response.status_code == 200:
        display_quick_result(response.json())
    else:
        show_error(response)


def results_table(results: list, title: str, limit: int = 10) -> Table:
    table = Table(title=title)
    table.add_column("Source", style="magenta")
    table.add_column("Location", style="cyan", no_wrap=False)
    table.add_column("Confidence", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Edit", no_wrap=False)

    for r in results[:limit]:
        table.add_row(
            r.get("source_type", "unknown"),
            r.get("location", ""),
            f"{r.get('confidence', 0):.0%}",
            f"{r.get('combined_score', 0):.2f}",
            r.get("edit_reference", ""),
        )
    return table


def display_attribution(attribution: Optional[dict]):
    if not attribution:
        return
    console.print(f"\n[bold]{attribution.get('label', '')}[/bold]")
    if attribution.get("edit_reference"):
        console.print(f"Edit: [cyan]{attribution['edit_reference']}[/cyan]")
    if attribution.get("narrative"):
        console.print(attribution["narrative"])


def display_quick_result(data: dict):
    """Display a quick scan result."""
    results = data.get("results", [])
    if not results:
        console.print("[yellow]No matching source found. Try --deep.[/yellow]")
        return

    title = f"Quick scan ({data.get('elapsed_ms', 0):.0f}ms, confidence {data.get('confidence', 0):.0%})"
    console.print(results_table(results, title))

    if data.get("timed_out"):
        skipped = ", ".join(data.get("skipped_providers", [])) or "none"
        console.print(f"[yellow]Budget reached; skipped: {skipped}[/yellow]")
    for provider, error in data.get("provider_errors", {}).items():
        console.print(f"[dim]{provider} failed: {error}[/dim]")

    display_attribution(data.get("analysis"))


@cli.command()
@click.argument("job_id")
@click.option("--watch", "-w", is_flag=True, help="Poll until the scan finishes")
@click.option("--interval", default=2.0, help="Seconds between polls")
def progress(job_id: str, watch: bool, interval: float):
    """Show deep scan progress."""
    asyncio.run(show_progress(job_id, watch, interval))


async def show_progress(job_id: str, watch: bool, interval: float):
    response = await request("GET", f"/scan/deep/{job_id}")
    if response is None:
        return
    if response.status_code != 200:
        show_error(response)
        return
    data = response.json()

    if watch and data["status"] not in TERMINAL:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console
        ) as bar:
            task = bar.add_task(data["current_task"], total=100, completed=data["progress"])
            while data["status"] not in TERMINAL:
                await asyncio.sleep(interval)
                response = await request("GET", f"/scan/deep/{job_id}")
                if response is None or response.status_code != 200:
                    break
                data = response.json()
                bar.update(task, description=data["current_task"], completed=data["progress"])

    display_progress(data)


def display_progress(data: dict):
    status = data.get("status", "unknown")
    color = {"completed": "green", "error": "red", "cancelled": "yellow"}.get(status, "cyan")
    console.print(
        f"[{color}]{status.upper()}[/{color}] {data.get('progress', 0):.0f}% "
        f"- {data.get('current_phase', '')}: {data.get('current_task', '')} "
        f"[dim]({data.get('scan_time', 0):.0f}s)[/dim]"
    )
    if data.get("error"):
        console.print(f"[red]{data['error']}[/red]")

    ranked = data.get("ranked") or []
    if ranked:
        console.print(results_table(ranked, "Ranked results"))
    elif data.get("results"):
        console.print(f"{len(data['results'])} partial results so far")
    display_attribution(data.get("attribution"))


def _control(action: str):
    @cli.command(name=action, help=f"{action.capitalize()} a deep scan.")
    @click.argument("job_id")
    def command(job_id: str):
        asyncio.run(control_job(job_id, action))
    return command


async def control_job(job_id: str, action: str):
    response = await request("POST", f"/scan/deep/{job_id}/{action}")
    if response is None:
        return
    if response.status_code == 200:
        console.print(f"[green]✓[/green] {job_id}: {response.json()['status']}")
    else:
        show_error(response)


pause = _control("pause")
resume = _control("resume")
cancel = _control("cancel")


@cli.command()
@click.argument("job_id")
@click.option("--format", "-f", "fmt", type=click.Choice(["csv", "json"]), default="csv")
def export(job_id: str, fmt: str):
    """Export deep scan results to a file."""
    asyncio.run(export_job(job_id, fmt))


async def export_job(job_id: str, fmt: str):
    response = await request("POST", f"/scan/deep/{job_id}/export", params={"format": fmt})
    if response is None:
        return
    if response.status_code == 200:
        console.print(f"[green]✓[/green] Exported to {response.json()['path']}")
    else:
        show_error(response)


@cli.group()
def daemon():
    """Manage the site detective daemon."""


@daemon.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def start(config: Optional[str]):
    """Start the site detective daemon."""
    console.print("[cyan]Starting site detective daemon...[/cyan]")

    from ..daemon.main import main as daemon_main

    try:
        asyncio.run(daemon_main(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Daemon error:[/red] {e}")
        logger.exception("Daemon crashed")


@daemon.command()
def stop():
    """Stop the site detective daemon."""
    asyncio.run(stop_daemon())


async def stop_daemon():
    response = await request("POST", "/shutdown", timeout=5.0)
    if response is not None and response.status_code == 200:
        console.print("[green]Daemon stopped[/green]")
    elif response is not None:
        show_error(response)


@daemon.command()
def status():
    """Check daemon status."""
    asyncio.run(check_status())


async def check_status():
    """Check if daemon is running and get stats."""
    response = await request("GET", "/status", timeout=2.0)
    if response is None:
        return
    if response.status_code != 200:
        console.print("[red]Daemon error[/red]")
        return

    data = response.json()
    console.print("[green]✓ Daemon is running[/green]")
    console.print(f"\nUptime: {data.get('uptime', 'unknown')}")
    stats = data.get("stats", {})
    console.print(f"Quick scans: {stats.get('quick_scans', 0)}")
    console.print(
        f"Deep scans: {stats.get('deep_scans_started', 0)} started, "
        f"{stats.get('deep_scans_completed', 0)} completed, "
        f"{stats.get('active_jobs', 0)} active"
    )
    console.print(f"Memory: {stats.get('memory_mb', 0):.1f} MB")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
