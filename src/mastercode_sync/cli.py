"""Command line entry points: import, push and init-db."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import psycopg

from .config import Config
from .import_runner import import_file
from .logging import setup_logging
from .metrics import get_metrics
from .push_runner import PushBatchRunner, PushOptions
from .reports import (
    ImportReport,
    PushResultLog,
    default_report_path,
    utc_now,
    write_import_report,
)
from .schema import ensure_schema
from .store import ProductStore
from .sync_client import create_sync_client

logger = logging.getLogger(__name__)


def _load_config() -> Config:
    try:
        config = Config.from_env()
    except RuntimeError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    setup_logging(config.log_format, config.log_level)
    return config


async def _connect(config: Config, *, autocommit: bool = False) -> psycopg.AsyncConnection:
    try:
        return await psycopg.AsyncConnection.connect(config.database_url, autocommit=autocommit)
    except psycopg.OperationalError as exc:
        logger.error("Database unreachable: %s", exc)
        sys.exit(1)


@click.group()
def main():
    """Imweb master code import and sync tools."""


@main.command("init-db")
def init_db():
    """Create the product, mapping and sequence tables."""
    config = _load_config()

    async def _run() -> None:
        async with await _connect(config) as conn:
            await ensure_schema(conn)

    asyncio.run(_run())
    click.echo("Schema ready.")


@main.command("import")
@click.option(
    "--file", "file_path",
    type=click.Path(path_type=Path),
    required=True,
    help="Imweb product export (.xlsx or .csv).",
)
@click.option("--allow-existing", is_flag=True, help="Skip rows whose product is already mapped.")
@click.option("--sheet", type=str, help="Worksheet name (default: first sheet).")
@click.option("--report", "report_path", type=click.Path(path_type=Path), help="Report JSON path.")
@click.option(
    "--progress-interval", type=int, default=50, show_default=True,
    help="Log progress every N rows.",
)
def import_command(
    file_path: Path,
    allow_existing: bool,
    sheet: str | None,
    report_path: Path | None,
    progress_interval: int,
):
    """Import products and issue master codes."""
    config = _load_config()
    report_path = (report_path or default_report_path("import", "json")).resolve()

    def _failed_report() -> ImportReport:
        return ImportReport(
            file=str(file_path.resolve()),
            allow_existing=allow_existing,
            finished_at=utc_now(),
        )

    async def _run() -> ImportReport:
        try:
            conn = await psycopg.AsyncConnection.connect(config.database_url, autocommit=True)
        except psycopg.OperationalError as exc:
            logger.error("Database unreachable: %s", exc)
            return _failed_report()
        async with conn:
            try:
                await ensure_schema(conn)
            except psycopg.Error as exc:
                logger.error("Schema setup failed: %s", exc)
                return _failed_report()
            return await import_file(
                ProductStore(conn),
                file_path,
                sheet_name=sheet,
                allow_existing=allow_existing,
                progress_interval=progress_interval,
            )

    report = asyncio.run(_run())
    write_import_report(report_path, report)
    logger.info("Run metrics: %s", get_metrics())
    click.echo(
        f"status={report.status} processed={report.processed} "
        f"skipped={report.skipped_existing} errors={len(report.errors)}"
    )
    click.echo(f"Report: {report_path}")
    sys.exit(report.exit_code)


@main.command("push")
@click.option("--limit", type=int, default=100, show_default=True, help="Maximum mappings to process.")
@click.option("--concurrency", type=int, default=3, show_default=True, help="Parallel pushes.")
@click.option("--rate-limit", type=float, default=5, show_default=True, help="Requests per second.")
@click.option("--retries", type=int, default=3, show_default=True, help="Retries after a failure.")
@click.option("--backoff-ms", type=int, default=500, show_default=True, help="Initial backoff.")
@click.option("--report", "report_path", type=click.Path(path_type=Path), help="Results JSONL path.")
@click.option("--dry-run", is_flag=True, help="Select and pace without calling Imweb.")
@click.option(
    "--only-unsynced/--all", default=True, show_default=True,
    help="Only mappings not yet pushed.",
)
def push_command(
    limit: int,
    concurrency: int,
    rate_limit: float,
    retries: int,
    backoff_ms: int,
    report_path: Path | None,
    dry_run: bool,
    only_unsynced: bool,
):
    """Push master codes back to Imweb."""
    config = _load_config()
    report_path = (report_path or default_report_path("push", "jsonl")).resolve()
    options = PushOptions(
        limit=limit,
        concurrency=concurrency,
        rate_limit=rate_limit,
        retries=retries,
        backoff_ms=backoff_ms,
        dry_run=dry_run,
        only_unsynced=only_unsynced,
    )

    async def _run():
        client = create_sync_client(config.imweb)
        try:
            async with await _connect(config, autocommit=True) as conn:
                runner = PushBatchRunner(
                    ProductStore(conn), client, PushResultLog(report_path), options
                )
                return await runner.run()
        finally:
            await client.aclose()

    try:
        summary = asyncio.run(_run())
    except Exception:
        logger.exception("Master code push aborted")
        sys.exit(1)

    logger.info("Run metrics: %s", get_metrics())
    click.echo(f"success={summary.success} failure={summary.failure}")
    click.echo(f"Results: {report_path}")
    sys.exit(summary.exit_code)


if __name__ == "__main__":
    main()
