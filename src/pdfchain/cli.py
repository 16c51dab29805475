"""Command line interface for pdfchain."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from pdfchain.catalog.storage import SQLiteCatalogStore
from pdfchain.config import AppConfig
from pdfchain.models import StageSummary
from pdfchain.pipeline import Pipeline, build_pipeline
from pdfchain.web.app import app as web_app


console = Console()
app = typer.Typer(help="pdfchain - incremental PDF ingestion pipeline")

DEFAULTS = AppConfig()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _make_config(
    db: Optional[Path],
    source: Optional[Path] = None,
    curated: Optional[Path] = None,
    stats: Optional[Path] = None,
    year: Optional[int] = None,
    quarter: Optional[int] = None,
    workers: Optional[int] = None,
) -> AppConfig:
    return AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        source_dir=source if source is not None else DEFAULTS.source_dir,
        curated_path=curated,
        stats_path=stats,
        stats_year=year if year is not None else DEFAULTS.stats_year,
        stats_quarter=quarter if quarter is not None else DEFAULTS.stats_quarter,
        max_workers=workers if workers is not None else DEFAULTS.max_workers,
    )


def _open_pipeline(config: AppConfig) -> Pipeline:
    try:
        return build_pipeline(config)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc


def _print_summaries(summaries: List[StageSummary]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Stage")
    table.add_column("Processed")
    table.add_column("Skipped")
    table.add_column("Failed")
    table.add_column("Status")
    for summary in summaries:
        status = "[red]aborted[/red]" if summary.aborted else "ok"
        table.add_row(
            summary.stage,
            str(summary.processed_count),
            str(summary.skipped_count),
            str(summary.failed_count),
            status,
        )
    console.print(table)
    for summary in summaries:
        for error in summary.errors:
            console.print(f"[yellow]{summary.stage}:[/yellow] {error}")


def _run_single(stage: str, config: AppConfig) -> None:
    pipeline = _open_pipeline(config)
    try:
        summary = pipeline.run_stage(stage)
    finally:
        pipeline.close()
    _print_summaries([summary])
    if summary.aborted:
        raise typer.Exit(code=1)


SourceOption = typer.Option(None, "--source", "-s", help="Directory watched for PDFs")
DbOption = typer.Option(None, "--db", help="SQLite database path")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")
CuratedOption = typer.Option(None, "--curated", help="Curated reference CSV")
StatsOption = typer.Option(None, "--stats", help="On-time statistics CSV file or folder")
YearOption = typer.Option(None, "--year", help="Statistics year filter")
QuarterOption = typer.Option(None, "--quarter", help="Statistics quarter filter")


@app.command()
def watch(
    source: Path = SourceOption,
    db: Path = DbOption,
    verbose: bool = VerboseOption,
) -> None:
    """Refresh the source listing and report new files."""
    _setup_logging(verbose)
    _run_single("watcher", _make_config(db, source))


@app.command()
def catalog(
    source: Path = SourceOption,
    db: Path = DbOption,
    verbose: bool = VerboseOption,
) -> None:
    """Record newly detected PDF versions in the catalog."""
    _setup_logging(verbose)
    _run_single("cataloger", _make_config(db, source))


@app.command()
def extract(
    db: Path = DbOption,
    workers: int = typer.Option(DEFAULTS.max_workers, help="Parallel extraction workers"),
    verbose: bool = VerboseOption,
) -> None:
    """Parse cataloged PDFs that have no extraction result yet."""
    _setup_logging(verbose)
    _run_single("extractor", _make_config(db, workers=workers))


@app.command()
def model(
    db: Path = DbOption,
    curated: Path = CuratedOption,
    stats: Path = StatsOption,
    year: int = YearOption,
    quarter: int = QuarterOption,
    verbose: bool = VerboseOption,
) -> None:
    """Rebuild the integrated view and report its size."""
    _setup_logging(verbose)
    _run_single("modeler", _make_config(db, curated=curated, stats=stats, year=year, quarter=quarter))


@app.command()
def run(
    source: Path = SourceOption,
    db: Path = DbOption,
    curated: Path = CuratedOption,
    stats: Path = StatsOption,
    year: int = YearOption,
    quarter: int = QuarterOption,
    workers: int = typer.Option(DEFAULTS.max_workers, help="Parallel extraction workers"),
    every: Optional[float] = typer.Option(None, "--every", help="Repeat every N seconds"),
    iterations: Optional[int] = typer.Option(None, help="Stop after N runs when repeating"),
    verbose: bool = VerboseOption,
) -> None:
    """Run the watcher -> cataloger -> extractor -> modeler chain."""
    _setup_logging(verbose)
    config = _make_config(db, source, curated, stats, year, quarter, workers)
    pipeline = _open_pipeline(config)
    try:
        if every is None:
            _print_summaries(pipeline.run_chain())
        else:
            console.print(f"Running every {every:g}s (Ctrl+C to stop)")
            runs = pipeline.run_forever(every, iterations=iterations, on_run=_print_summaries)
            console.print(f"Completed {runs} runs.")
    finally:
        pipeline.close()


def _open_existing_store(db: Optional[Path]) -> SQLiteCatalogStore:
    resolved_db = _make_config(db).resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return SQLiteCatalogStore(resolved_db)


@app.command()
def files(db: Path = DbOption) -> None:
    """List cataloged file versions and whether they were extracted."""
    store = _open_existing_store(db)
    try:
        records = store.list_file_records()
        extracted = store.extracted_version_keys()
    finally:
        store.close()

    if not records:
        console.print("[yellow]Catalog is empty.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Path")
    table.add_column("Modified")
    table.add_column("Size")
    table.add_column("Extracted")
    for record in records:
        table.add_row(
            record.relative_path,
            record.last_modified.isoformat(),
            str(record.size),
            "yes" if record.version_key in extracted else "[yellow]pending[/yellow]",
        )
    console.print(table)


@app.command()
def view(
    db: Path = DbOption,
    curated: Path = CuratedOption,
    stats: Path = StatsOption,
    year: int = YearOption,
    quarter: int = QuarterOption,
    limit: int = typer.Option(20, help="Maximum rows to display"),
    as_json: bool = typer.Option(False, "--json", help="Print rows as JSON lines"),
) -> None:
    """Show rows of the integrated view."""
    config = _make_config(db, curated=curated, stats=stats, year=year, quarter=quarter)
    if not config.resolve_db_path(Path.cwd()).exists():
        raise typer.BadParameter(f"Database not found: {config.resolve_db_path(Path.cwd())}")

    pipeline = _open_pipeline(config)
    try:
        summary = pipeline.run_modeler()
        if summary.aborted or pipeline.last_view is None:
            _print_summaries([summary])
            raise typer.Exit(code=1)
        modeled = pipeline.last_view
        rows = []
        for row in modeled.rows():
            rows.append(row)
            if len(rows) >= limit:
                break
    finally:
        pipeline.close()

    if not rows:
        console.print("[yellow]View is empty.[/yellow]")
        return

    if as_json:
        for row in rows:
            typer.echo(json.dumps(row, default=str))
        return

    table = Table(show_header=True, header_style="bold magenta")
    shown = [name for name in modeled.columns if name not in ("content", "metadata", "source_url")]
    for name in shown:
        table.add_column(name)
    for row in rows:
        table.add_row(*("" if row.get(name) is None else str(row.get(name)) for name in shown))
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP trigger API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - defensive
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    console.print(f"Starting pdfchain API on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
