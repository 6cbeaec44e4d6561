"""CLI entry point for snapwatch."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from snapwatch.models.config import DEFAULT_CONFIG_FILE, SnapshotConfig
from snapwatch.models.snapshot import ComparisonResult
from snapwatch.reporter.json_report import write_batch_report
from snapwatch.service import SnapshotService

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_service(config: str) -> SnapshotService:
    try:
        cfg = SnapshotConfig.load(config)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Run 'snapwatch init' to create a default config.")
        sys.exit(1)
    return SnapshotService(cfg)


def _format_diff(result: ComparisonResult) -> tuple[str, str]:
    if result.status == "error":
        return "[red]-1[/red]", "-"
    if not result.has_diff:
        return "[dim]first snapshot[/dim]", "-"
    style = "green" if result.diff_pixel_count == 0 else "yellow"
    return (
        f"[{style}]{result.diff_pixel_count}[/{style}]",
        f"{result.diff_percentage:.2f}%",
    )


def _results_table(results: list[ComparisonResult], title: str) -> Table:
    table = Table(title=title)
    table.add_column("URL", style="bold")
    table.add_column("Status")
    table.add_column("Diff pixels", justify="right")
    table.add_column("Diff %", justify="right")
    table.add_column("Timestamp")
    table.add_column("Details")
    for r in results:
        pixels, pct = _format_diff(r)
        if r.status == "error":
            status = f"[red]{r.error_kind.value}[/red]"
            details = r.message or ""
        else:
            status = "[green]success[/green]"
            details = r.diff_artifact_path or r.snapshot_path or ""
        table.add_row(r.url, status, pixels, pct, r.timestamp, details)
    return table


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "-c", default=DEFAULT_CONFIG_FILE, help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str) -> None:
    """Visual regression snapshots: capture sites and diff against the previous capture."""
    setup_logging(verbose)
    ctx.obj = {"config": config}


@cli.command()
@click.option("--storage-dir", "-s", default=None, help="Where snapshots and results are stored")
@click.pass_context
def init(ctx: click.Context, storage_dir: str | None) -> None:
    """Create a default configuration file."""
    config_path = Path(ctx.obj["config"])
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    cfg = SnapshotConfig(storage_dir=storage_dir) if storage_dir else SnapshotConfig()
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nAdd a site and take the first snapshot:")
    console.print("  [blue]snapwatch add https://example.com[/blue]")
    console.print("  [blue]snapwatch compare[/blue]")


@cli.command()
@click.argument("url")
@click.pass_context
def add(ctx: click.Context, url: str) -> None:
    """Register a site to watch."""
    service = _load_service(ctx.obj["config"])
    try:
        added = service.add_target(url)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    if added:
        console.print(f"[green]Added:[/green] {url}")
    elif not url.strip():
        console.print("[yellow]Nothing to add[/yellow]")
    else:
        console.print(f"[yellow]Already registered:[/yellow] {url}")


@cli.command("list")
@click.pass_context
def list_targets(ctx: click.Context) -> None:
    """List registered sites."""
    service = _load_service(ctx.obj["config"])
    urls = service.list_targets()
    if not urls:
        console.print("[yellow]No sites registered[/yellow]")
        return
    for i, url in enumerate(urls, 1):
        console.print(f"  {i}. {url}")


@cli.command()
@click.argument("url")
@click.pass_context
def remove(ctx: click.Context, url: str) -> None:
    """Stop watching a site. Its snapshot files are kept."""
    service = _load_service(ctx.obj["config"])
    if service.delete_target(url):
        console.print(f"[green]Removed:[/green] {url}")
    else:
        console.print(f"[yellow]Not registered:[/yellow] {url}")


@cli.command()
@click.argument("urls", nargs=-1)
@click.option("--report", "-r", default=None, help="Write a JSON report of the batch to this path")
@click.pass_context
def compare(ctx: click.Context, urls: tuple[str, ...], report: str | None) -> None:
    """Capture and compare sites (all registered sites when none are given)."""
    service = _load_service(ctx.obj["config"])
    targets = list(urls) or service.list_targets()
    if not targets:
        console.print("[yellow]No sites to compare. Add one with 'snapwatch add URL'.[/yellow]")
        return

    if report:
        service.add_batch_listener(lambda results: write_batch_report(results, Path(report)))

    results = service.run_compare_all(targets)
    console.print(_results_table(results, "Comparison Results"))
    if report:
        console.print(f"  JSON report: [blue]{report}[/blue]")


@cli.command()
@click.pass_context
def results(ctx: click.Context) -> None:
    """Show the latest result for every site."""
    service = _load_service(ctx.obj["config"])
    latest = service.get_latest_results()
    if not latest:
        console.print("[yellow]No comparisons run yet[/yellow]")
        return
    console.print(_results_table(list(latest.values()), "Latest Results"))


@cli.command()
@click.argument("path")
@click.option("--output", "-o", required=True, help="Where to write the image")
@click.pass_context
def artifact(ctx: click.Context, path: str, output: str) -> None:
    """Copy a diff artifact out of the snapshot store."""
    service = _load_service(ctx.obj["config"])
    try:
        data = service.get_diff_artifact(path)
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    Path(output).write_bytes(data)
    console.print(f"[green]Wrote {len(data)} bytes to {output}[/green]")


@cli.command("open")
@click.argument("url", required=False)
@click.pass_context
def open_dir(ctx: click.Context, url: str | None) -> None:
    """Open the snapshot directory (of one site, or all)."""
    service = _load_service(ctx.obj["config"])
    directory = service.snapshot_dir(url) if url else service.snapshots_dir
    if not directory.exists():
        console.print(f"[red]Directory does not exist: {directory}[/red]")
        sys.exit(1)
    click.launch(str(directory))


@cli.command()
@click.argument("url")
@click.option("--keep", "-k", type=click.IntRange(min=1), required=True,
              help="Number of newest snapshots to keep")
@click.pass_context
def prune(ctx: click.Context, url: str, keep: int) -> None:
    """Delete old snapshots of a site, keeping the newest KEEP."""
    service = _load_service(ctx.obj["config"])
    removed = service.prune(url, keep)
    console.print(f"[green]Removed {removed} snapshot(s)[/green] for {url}")


if __name__ == "__main__":
    cli()
