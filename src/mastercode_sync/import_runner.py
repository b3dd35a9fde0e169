"""Imweb product import batch.

Rows run one at a time. Each valid row is persisted in its own transaction:
mapping lookup, master code issuance, collision re-check and inserts commit
together or not at all. A bad row is recorded and the batch moves on; only
an unreadable source fails the whole run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Literal, Protocol

from . import metrics
from .code_issuer import IssuedCode, SequenceExhaustedError
from .reports import ImportReport, utc_now
from .row_source import RowSourceError, load_numbered_rows
from .row_validation import ProductIntent, RowError, RowErrorCode, validate_row
from .store import IMWEB, ExistingMapping, ExternalSystem

logger = logging.getLogger(__name__)

HEADER_ROWS = 1

RowOutcome = Literal["created", "skipped"]


class ImportStore(Protocol):
    def transaction(self) -> Any: ...

    async def find_external_map(
        self, system: ExternalSystem, external_id: str
    ) -> ExistingMapping | None: ...

    async def master_code_exists(self, master_code: str) -> bool: ...

    async def issue_master_code(self, category_id: str) -> IssuedCode: ...

    async def create_product(
        self, intent: ProductIntent, *, master_code: str, system: ExternalSystem
    ) -> str: ...


class RowRejected(Exception):
    """Raised inside a row transaction to roll it back with a typed code."""

    def __init__(self, code: RowErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


async def persist_row(
    store: ImportStore,
    intent: ProductIntent,
    *,
    allow_existing: bool,
    system: ExternalSystem = IMWEB,
) -> RowOutcome:
    """Persist one validated row atomically; raise RowRejected to roll back."""
    async with store.transaction():
        existing = await store.find_external_map(system, intent.product_id)
        if existing is not None:
            if not allow_existing:
                raise RowRejected(
                    "EXISTS",
                    f"external product already mapped (product_id={existing.product_id}, "
                    f"master_code={existing.master_code})",
                )
            logger.info("Skipping existing product %s", intent.product_id)
            return "skipped"

        try:
            issued = await store.issue_master_code(intent.issued_category_id)
        except SequenceExhaustedError as exc:
            raise RowRejected("SEQUENCE_EXHAUSTED", str(exc)) from exc

        if await store.master_code_exists(issued.master_code):
            raise RowRejected(
                "MASTER_CODE_COLLISION",
                f"issued master code already exists ({issued.master_code}); "
                "category sequence is out of step with products",
            )

        await store.create_product(intent, master_code=issued.master_code, system=system)
        logger.debug("Created %s for external product %s", issued.master_code, intent.product_id)
        return "created"


def _record_error(report: ImportReport, error: RowError) -> None:
    report.add_error(error.row_number, error.message, error.code)
    metrics.record_row_failed(error.code)
    logger.error(
        "[Row %d] %s (%s)",
        error.row_number,
        error.message,
        error.code,
        extra={"mc_row_number": error.row_number, "mc_error_code": error.code},
    )


async def run_import(
    store: ImportStore,
    rows: Sequence[dict[str, Any]],
    *,
    source: str,
    allow_existing: bool = False,
    progress_interval: int = 50,
    report: ImportReport | None = None,
    row_numbers: Sequence[int] | None = None,
) -> ImportReport:
    """Drive every row through validation and persistence.

    ``row_numbers`` gives each row's sheet row number; without it rows are
    numbered consecutively after the header.
    """
    if report is None:
        report = ImportReport(file=source, allow_existing=allow_existing)
    progress_interval = max(1, progress_interval)
    report.total_rows = len(rows)
    logger.info("Detected %d rows in %s", len(rows), source)

    for index, raw_row in enumerate(rows):
        row_number = row_numbers[index] if row_numbers is not None else index + 1 + HEADER_ROWS
        try:
            result = validate_row(raw_row, row_number)
        except Exception as exc:
            logger.exception("[Row %d] unexpected validation failure", row_number)
            _record_error(report, RowError(row_number=row_number, code="UNKNOWN", message=str(exc)))
            continue
        for message in result.warnings:
            report.add_warning(row_number, message)

        if isinstance(result, RowError):
            _record_error(report, result)
            continue

        try:
            outcome = await persist_row(store, result.intent, allow_existing=allow_existing)
        except RowRejected as exc:
            _record_error(report, RowError(row_number=row_number, code=exc.code, message=str(exc)))
            continue
        except Exception as exc:
            logger.exception("[Row %d] unexpected persistence failure", row_number)
            _record_error(report, RowError(row_number=row_number, code="UNKNOWN", message=str(exc)))
            continue

        if outcome == "skipped":
            report.skipped_existing += 1
            metrics.record_row_skipped()
        else:
            report.processed += 1
            metrics.record_row_created()

        if (index + 1) % progress_interval == 0:
            logger.info("Progress %d/%d rows", index + 1, len(rows))

    if report.errors:
        report.status = "partial"
        logger.warning(
            "Finished with %d row errors; remaining rows were processed", len(report.errors)
        )
    else:
        report.status = "success"
        logger.info("All rows processed")
    report.finished_at = utc_now()
    return report


async def import_file(
    store: ImportStore,
    path: str | Path,
    *,
    sheet_name: str | None = None,
    allow_existing: bool = False,
    progress_interval: int = 50,
) -> ImportReport:
    """Load a source file and import it; top-level failures yield a failed report."""
    source = str(Path(path).resolve())
    report = ImportReport(file=source, allow_existing=allow_existing)
    try:
        numbered = load_numbered_rows(path, sheet_name=sheet_name)
        await run_import(
            store,
            [row for _, row in numbered],
            row_numbers=[number for number, _ in numbered],
            source=source,
            allow_existing=allow_existing,
            progress_interval=progress_interval,
            report=report,
        )
    except RowSourceError as exc:
        logger.error("Cannot read import source: %s", exc)
        report.status = "failed"
    except Exception:
        logger.exception("Import aborted")
        report.status = "failed"
    finally:
        report.finished_at = utc_now()
    return report
