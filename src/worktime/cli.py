"""Command-line interface for the work time tracker."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from .config import TrackerSettings
from .paths import get_archives_dir, get_log_path, get_snapshot_path
from .periods import parse_month_key

app = typer.Typer(help="Per-project active time tracker.")


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    log_file: bool = typer.Option(
        False, "--log-file", help="Also write logs to the application data directory."
    ),
) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(get_log_path(), encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
    )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8765, "--port", min=1, max=65535, help="TCP port for the API."),
    snapshot_path: Optional[Path] = typer.Option(
        None, "--data", path_type=Path, help="Location of the projects JSON file."
    ),
    archives_dir: Optional[Path] = typer.Option(
        None, "--archives", path_type=Path, help="Directory holding monthly archives."
    ),
    idle_minutes: float = typer.Option(
        15.0,
        "--idle-timeout",
        min=0.5,
        help="Minutes without input before a project is considered idle.",
    ),
    checkpoint_minutes: float = typer.Option(
        5.0,
        "--checkpoint-interval",
        min=0.5,
        help="Minutes between checkpoint saves of running sessions.",
    ),
) -> None:
    """Run the tracking API until interrupted."""
    from .server_runner import run_server

    settings = TrackerSettings.from_intervals(
        idle_minutes=idle_minutes, checkpoint_minutes=checkpoint_minutes
    )
    run_server(
        host=host,
        port=port,
        snapshot_path=snapshot_path or get_snapshot_path(),
        archives_dir=archives_dir or get_archives_dir(),
        settings=settings,
    )


@app.command()
def summary(
    snapshot_path: Optional[Path] = typer.Option(
        None, "--data", path_type=Path, help="Location of the projects JSON file."
    ),
    archives_dir: Optional[Path] = typer.Option(
        None, "--archives", path_type=Path, help="Directory holding monthly archives."
    ),
) -> None:
    """Print today's, this week's and this month's totals."""
    from .reporting import SummaryPrinter

    printer = SummaryPrinter(
        snapshot_path=snapshot_path or get_snapshot_path(),
        archives_dir=archives_dir or get_archives_dir(),
    )
    printer.print_summary(datetime.now())


@app.command()
def archive(
    month: Optional[str] = typer.Option(
        None, "--month", help="Month (YYYY-MM) to show. Lists all archives when omitted."
    ),
    archives_dir: Optional[Path] = typer.Option(
        None, "--archives", path_type=Path, help="Directory holding monthly archives."
    ),
) -> None:
    """Inspect monthly archives."""
    from .reporting import SummaryPrinter

    printer = SummaryPrinter(archives_dir=archives_dir or get_archives_dir())
    if month is None:
        printer.print_archive_index()
        return
    try:
        year, month_number = parse_month_key(month)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--month") from exc
    printer.print_archive(year, month_number)
