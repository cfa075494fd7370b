from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer

from patchpro.core import remediate
from patchpro.core import storage
from patchpro.core.config import ConfigError, load_settings
from patchpro.core.feed import FeedError
from patchpro.core.log import setup_logging
from patchpro.reporting.report import describe_status

app = typer.Typer(help="PatchPro CLI")


@app.command()
def run(
    feed: List[Path] = typer.Option(..., "--feed", help="Vulnerability feed JSON (repeat to merge several)"),
    repo_map: Path = typer.Option(..., "--repo-map", help="Repository map JSON"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Worker pool size"),
    env_file: Optional[Path] = typer.Option(None, "--env-file", help="Settings file (default: .env)"),
    notify: bool = typer.Option(True, "--notify/--no-notify", help="Send the report to Slack"),
):
    """Remediate every mapped repository in the feed."""
    settings = load_settings(env_file)
    if workers:
        settings = settings.model_copy(update={"max_workers": workers})
    setup_logging(settings.log_level)

    try:
        summary = remediate.perform_run(feed, repo_map, settings, notify=notify)
    except (ConfigError, FeedError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)

    for item in summary.items:
        line = f"{item.repo_url}: {describe_status(item)}"
        if item.pr_url:
            line += f" ({item.pr_url})"
        typer.echo(line)
    typer.echo(f"\nRun saved: {summary.run_id}")


@app.command()
def plan(
    feed: List[Path] = typer.Option(..., "--feed", help="Vulnerability feed JSON (repeat to merge several)"),
    repo_map: Path = typer.Option(..., "--repo-map", help="Repository map JSON"),
    format: str = typer.Option("table", "--format", help="Output format: table or json"),
    env_file: Optional[Path] = typer.Option(None, "--env-file", help="Settings file (default: .env)"),
):
    """Show the upgrade plan without touching any repository."""
    settings = load_settings(env_file)
    try:
        merged, mapping, skipped = remediate.load_inputs(feed, repo_map)
    except FeedError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1)

    jobs = list(remediate.iter_jobs(merged, mapping, settings, skipped))
    if format == "json":
        typer.echo(json.dumps([job.model_dump(mode="json") for job in jobs], indent=2))
        return

    if format != "table":
        typer.echo(f"Warning: Unknown format '{format}', using table format")
    remediate.print_plan(jobs)
    if skipped:
        typer.echo(f"\nSkipped: {', '.join(sorted(set(skipped)))}")


@app.command("runs")
def list_runs():
    """List stored runs, newest first."""
    runs = storage.list_runs()
    if not runs:
        typer.echo("No runs stored.")
        return
    for item in runs:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(item["statuses"].items())) or "no items"
        typer.echo(f"{item['run_id']}  jobs={item['jobs']}  {counts}")


@app.command()
def show(run_id: str = typer.Argument(..., help="Run identifier")):
    """Print the stored summary of a run."""
    data = storage.load_run(run_id)
    if not data:
        typer.echo(f"Run not found: {run_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(data, indent=2))


if __name__ == "__main__":
    app()
