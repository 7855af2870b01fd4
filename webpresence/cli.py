"""Typer CLI for the web presence tracker.

Runs the job-system passes by hand, starts the local worker or the HTTP
trigger server, and inspects competitors and extraction plans.
"""

import asyncio
import logging
import time
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()
app = typer.Typer(
    name="webpresence",
    help="Web Presence Tracker -- SERP positions, competitors and page extraction jobs.",
    add_completion=False,
    no_args_is_help=True,
)


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context."""
    return asyncio.run(coro)


def _get_app(config: Optional[str]):
    from webpresence.app import WebPresenceApp
    tracker = WebPresenceApp(config_path=config)
    tracker.initialize()
    return tracker


ConfigOption = typer.Option(None, "--config", "-c", help="Path to settings.yaml.")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


# ------------------------------------------------------------------
# database / passes
# ------------------------------------------------------------------
@app.command("init-db")
def init_db(config: Optional[str] = ConfigOption, verbose: bool = VerboseOption) -> None:
    """Create all database tables."""
    _setup_logging(verbose)
    _get_app(config)
    console.print("[green]✔ Database ready[/green]")


@app.command("schedule-jobs")
def schedule_jobs(config: Optional[str] = ConfigOption, verbose: bool = VerboseOption) -> None:
    """Run one periodic scheduling pass."""
    _setup_logging(verbose)
    created = _get_app(config).schedule_jobs()
    console.print(f"[bold]{created}[/bold] jobs created")


@app.command("process-jobs")
def process_jobs(config: Optional[str] = ConfigOption, verbose: bool = VerboseOption) -> None:
    """Run one job processing pass."""
    _setup_logging(verbose)
    stats = _run_async(_get_app(config).process_jobs())
    table = Table(title="Processing pass", show_header=True, header_style="bold magenta")
    table.add_column("Completed", style="green")
    table.add_column("Failed", style="red")
    table.add_column("Total")
    table.add_row(str(stats["completed"]), str(stats["failed"]), str(stats["total"]))
    console.print(table)


@app.command()
def worker(
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Seconds between processing passes."),
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Run the scheduling and processing passes on a local APScheduler loop."""
    _setup_logging(verbose)
    tracker = _get_app(config)
    from webpresence.scheduler import TrackerScheduler

    sched_cfg = tracker.section("scheduler")
    scheduler = TrackerScheduler(
        job_store_url=sched_cfg.get("job_store"),
        timezone=sched_cfg.get("timezone", "UTC"),
        max_workers=sched_cfg.get("max_concurrent_jobs", 2),
    )
    scheduler.install_passes(
        schedule_cron=sched_cfg.get("schedule_cron", "0 * * * *"),
        process_interval_seconds=interval or sched_cfg.get("process_interval_seconds", 5),
        config_path=config,
    )
    scheduler.start()
    console.print(Panel("[bold cyan]Worker running[/bold cyan] (Ctrl+C to stop)"))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping worker...")
    finally:
        scheduler.stop()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port."),
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Serve the cron HTTP endpoints with uvicorn."""
    _setup_logging(verbose)
    import uvicorn

    api_cfg = _get_app(config).section("api")
    uvicorn.run(
        "webpresence.api:app",
        host=host or api_cfg.get("host", "0.0.0.0"),
        port=port or api_cfg.get("port", 8000),
        log_level="debug" if verbose else "info",
    )


@app.command("jobs-clear")
def jobs_clear(
    days: int = typer.Option(30, "--days", "-d", help="Delete finished jobs older than this."),
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Delete completed and failed jobs older than N days."""
    _setup_logging(verbose)
    _get_app(config)
    from webpresence.jobs.queue import JobQueue
    deleted = JobQueue().clear_finished(older_than_days=days)
    console.print(f"[bold]{deleted}[/bold] jobs deleted")


# ------------------------------------------------------------------
# analysis triggers
# ------------------------------------------------------------------
@app.command()
def analyze(
    website_id: int = typer.Argument(..., help="Website to analyze."),
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Queue an initial analysis for a website."""
    _setup_logging(verbose)
    _get_app(config)
    from webpresence.jobs.queue import JobQueue
    from webpresence.models import JobType
    job_id = JobQueue().enqueue(website_id, JobType.INITIAL_ANALYSIS, {}, priority=10)
    console.print(f"Queued initial analysis job [bold]{job_id}[/bold]")


@app.command("plan-extractions")
def plan_extractions(
    website_id: int = typer.Argument(..., help="Website whose latest sitemap is planned."),
    extraction_type: str = typer.Option("quick", "--type", "-t", help="quick or full."),
    competitor: Optional[int] = typer.Option(None, "--competitor", help="Plan a competitor sitemap instead."),
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Queue extraction jobs for new and stale sitemap URLs."""
    _setup_logging(verbose)
    planner = _get_app(config).extraction_planner()
    if competitor is not None:
        summary = planner.schedule_from_competitor_sitemap(competitor, extraction_type)
    else:
        summary = planner.schedule_from_sitemap(website_id, extraction_type)

    table = Table(title="Extraction plan", show_header=True, header_style="bold magenta")
    for key in ("total_urls", "created", "updated", "skipped", "jobs_created"):
        table.add_column(key.replace("_", " ").title())
    table.add_row(*(str(summary[k]) for k in ("total_urls", "created", "updated", "skipped", "jobs_created")))
    console.print(table)


@app.command()
def competitors(
    website_id: int = typer.Argument(..., help="Website to compare against its competitors."),
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show the head-to-head ranking score of every competitor."""
    _setup_logging(verbose)
    _get_app(config)
    from webpresence.modules.rank_tracker.competitor_score import rank_competitors

    rows = rank_competitors(website_id)
    table = Table(title=f"Competitors of website {website_id}", show_header=True, header_style="bold magenta")
    table.add_column("Competitor", style="cyan")
    table.add_column("Better", style="green")
    table.add_column("Worse", style="red")
    table.add_column("Compared")
    table.add_column("Net")
    for row in rows:
        table.add_row(row["name"], str(row["better"]), str(row["worse"]), str(row["total"]), str(row["net_score"]))
    console.print(table)
    if not rows:
        console.print("[yellow]No competitors tracked yet.[/yellow]")


@app.command("reanalyze-serp")
def reanalyze_serp(
    search_query_id: int = typer.Argument(..., help="Search query to recompute from stored SERPs."),
    config: Optional[str] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Recompute stored positions of a query from its raw SERP blobs."""
    _setup_logging(verbose)
    dispatcher = _get_app(config).build_dispatcher()
    summary = _run_async(dispatcher.serp_analyzer.reanalyze_from_blob(search_query_id))
    console.print(
        f"Updated [bold]{summary['updated']}[/bold] results, "
        f"{len(summary['competitors_added'])} competitors added"
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
