"""Command-line runner for the reconciliation jobs.

Every job command defaults to a dry run; ``--execute`` applies the computed
delta and ``--debug`` dumps the fetched candidate rows first. The exit code is
0 whenever the job completes (per-row failures are summarised in the output)
and 1 when the initial fetch fails.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from config import get_settings
from database import session_factory, session_scope
from jobs import (
    BackfillJob,
    DateShiftJob,
    InstallmentDedupJob,
    JobReport,
    ReconciliationJob,
    RegenerationJob,
    TemplateDedupJob,
    category_relabel_job,
    sector_relabel_job,
)
from ledger import LedgerRow
from ledger_client import FetchError, LedgerClient, StoreError
from migration import copy_ledger, verify_ledger

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Detect and repair fixed-expense installments in the ledger. "
        "Commands run as a dry run unless --execute is given."
    ),
)

EXECUTE_OPTION = typer.Option(False, "--execute", help="Apply the computed changes.")
DEBUG_OPTION = typer.Option(
    False, "--debug", help="Print the raw candidate rows before computing."
)
DATABASE_URL_OPTION = typer.Option(
    None, "--database-url", help="Override FIXED_EXPENSES_DATABASE_URL."
)


@contextmanager
def _client(database_url: Optional[str]) -> Iterator[LedgerClient]:
    with session_scope(database_url) as session:
        yield LedgerClient(session)


def _dump_rows(rows: list[LedgerRow]) -> None:
    typer.echo(f"--- {len(rows)} candidate row(s) ---")
    for row in rows:
        typer.echo(
            f"{row.id} | {row.description} | center={row.cost_center_id} | "
            f"date={row.date.isoformat()} | value={row.value} | "
            f"template={row.is_template} | duration={row.duration_months} | "
            f"n={row.installment_number} | created={row.created_at}"
        )
    typer.echo("---")


def _print_report(report: JobReport) -> None:
    for line in report.details:
        typer.echo(line)
    for failure in report.failures:
        typer.echo(f"FAILED: {failure}", err=True)
    typer.echo(report.summary())
    if report.dry_run:
        typer.echo("Dry run: nothing was written. Re-run with --execute to apply.")


def _run(
    build: Callable[[LedgerClient], ReconciliationJob],
    *,
    execute: bool,
    debug: bool,
    database_url: Optional[str],
) -> None:
    try:
        with _client(database_url) as client:
            job = build(client)
            report = job.run(apply=execute, on_fetched=_dump_rows if debug else None)
    except FetchError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc
    _print_report(report)


@app.command("dedup-installments")
def dedup_installments_cmd(
    execute: bool = EXECUTE_OPTION,
    debug: bool = DEBUG_OPTION,
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Remove installments that duplicate another row's identity (oldest wins)."""
    _run(InstallmentDedupJob, execute=execute, debug=debug, database_url=database_url)


@app.command("dedup-templates")
def dedup_templates_cmd(
    execute: bool = EXECUTE_OPTION,
    debug: bool = DEBUG_OPTION,
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Keep one template per description and cost center, removing the rest with their installments."""
    _run(TemplateDedupJob, execute=execute, debug=debug, database_url=database_url)


@app.command("regenerate")
def regenerate_cmd(
    template_id: Optional[str] = typer.Option(
        None,
        "--template-id",
        help="Regenerate this template only; otherwise every inconsistent template.",
    ),
    execute: bool = EXECUTE_OPTION,
    debug: bool = DEBUG_OPTION,
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Delete and rebuild installments from their template."""
    _run(
        lambda client: RegenerationJob(client, template_id=template_id),
        execute=execute,
        debug=debug,
        database_url=database_url,
    )


@app.command("backfill")
def backfill_cmd(
    execute: bool = EXECUTE_OPTION,
    debug: bool = DEBUG_OPTION,
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Insert installments that templates imply but the ledger lacks."""
    _run(BackfillJob, execute=execute, debug=debug, database_url=database_url)


@app.command("shift-date")
def shift_date_cmd(
    description: str = typer.Option(..., "--description", help="Substring of the description."),
    year: int = typer.Option(..., "--year", help="Target year of the template."),
    month: int = typer.Option(..., "--month", min=1, max=12, help="Target month of the template."),
    day: Optional[int] = typer.Option(
        None, "--day", min=1, max=31, help="Anchor day; defaults to the template's day."
    ),
    execute: bool = EXECUTE_OPTION,
    debug: bool = DEBUG_OPTION,
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Move matching templates to a new month and re-date their installments."""
    _run(
        lambda client: DateShiftJob(
            client, description, target_year=year, target_month=month, anchor_day=day
        ),
        execute=execute,
        debug=debug,
        database_url=database_url,
    )


@app.command("relabel-sector")
def relabel_sector_cmd(
    description: str = typer.Option(..., "--description", help="Substring of the description."),
    sector: str = typer.Option(..., "--sector", help="New sector value."),
    execute: bool = EXECUTE_OPTION,
    debug: bool = DEBUG_OPTION,
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Overwrite the sector of every matching expense."""
    _run(
        lambda client: sector_relabel_job(client, description, sector),
        execute=execute,
        debug=debug,
        database_url=database_url,
    )


@app.command("relabel-category")
def relabel_category_cmd(
    old: str = typer.Option(..., "--from", help="Category to rename."),
    new: str = typer.Option(..., "--to", help="New category value."),
    execute: bool = EXECUTE_OPTION,
    debug: bool = DEBUG_OPTION,
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Rename a category value on every row that carries it."""
    _run(
        lambda client: category_relabel_job(client, old, new),
        execute=execute,
        debug=debug,
        database_url=database_url,
    )


@app.command("migrate")
def migrate_cmd(
    target_url: str = typer.Option(..., "--target-url", help="Database URL to copy into."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1),
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Copy every ledger row into another store (insert or replace by id)."""
    size = batch_size or get_settings().batch_size
    try:
        with _client(database_url) as source, _client(target_url) as target:
            report = copy_ledger(source, target, batch_size=size)
    except StoreError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc
    for failure in report.failures:
        typer.echo(f"FAILED: {failure}", err=True)
    typer.echo(
        f"migrate: read={report.read} written={report.written} "
        f"failed_batches={report.failed_batches}"
    )


@app.command("verify")
def verify_cmd(
    target_url: str = typer.Option(..., "--target-url", help="Database URL to compare with."),
    database_url: Optional[str] = DATABASE_URL_OPTION,
) -> None:
    """Compare row counts and ids between this ledger and another store."""
    try:
        with _client(database_url) as source, _client(target_url) as target:
            report = verify_ledger(source, target)
    except StoreError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc
    for bucket in sorted(set(report.source_counts) | set(report.target_counts)):
        typer.echo(
            f"{bucket}: source={report.source_counts.get(bucket, 0)} "
            f"target={report.target_counts.get(bucket, 0)}"
        )
    if report.missing_ids:
        typer.echo(f"missing in target: {len(report.missing_ids)} row(s)")
        for row_id in report.missing_ids:
            typer.echo(f"  {row_id}")
    if not report.matches:
        raise typer.Exit(2)
    typer.echo("verify: stores match")


@app.callback()
def _root() -> None:
    """Load ``.env`` and configure logging before any command."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    get_settings.cache_clear()
    session_factory.cache_clear()
    logging.basicConfig(level=get_settings().log_level)


if __name__ == "__main__":  # pragma: no cover
    app()
