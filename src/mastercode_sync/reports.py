"""Import report and push result records.

Both are serialized with camelCase keys; the import report is one JSON
document per run, push results are JSON Lines (one record per item).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

ImportStatus = Literal["success", "partial", "failed"]
PushStatus = Literal["success", "error"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def timestamp_slug(moment: datetime | None = None) -> str:
    moment = moment or utc_now()
    return moment.isoformat().replace(":", "-").replace(".", "-").replace("+", "_")


def default_report_path(kind: str, suffix: str, moment: datetime | None = None) -> Path:
    return Path("reports") / f"imweb-{kind}-{timestamp_slug(moment)}.{suffix}"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReportWarning(_CamelModel):
    row_number: int
    message: str


class ReportError(_CamelModel):
    row_number: int
    message: str
    code: str | None = None


class ImportReport(_CamelModel):
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    file: str
    allow_existing: bool = False
    total_rows: int = 0
    processed: int = 0
    skipped_existing: int = 0
    warnings: list[ReportWarning] = Field(default_factory=list)
    errors: list[ReportError] = Field(default_factory=list)
    status: ImportStatus = "failed"

    @property
    def exit_code(self) -> int:
        return 0 if self.status == "success" else 1

    def add_warning(self, row_number: int, message: str) -> None:
        self.warnings.append(ReportWarning(row_number=row_number, message=message))

    def add_error(self, row_number: int, message: str, code: str | None) -> None:
        self.errors.append(ReportError(row_number=row_number, message=message, code=code))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


def write_import_report(path: Path, report: ImportReport) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.to_json(), encoding="utf-8")
    return path


class PushResultLine(_CamelModel):
    timestamp: datetime = Field(default_factory=utc_now)
    external_id: str
    product_id: str
    master_code: str
    status: PushStatus = "success"
    message: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class PushResultLog:
    """Append-only JSON Lines log shared by concurrent push workers.

    Every record goes out as one complete line in a single write; cross-worker
    ordering is not preserved.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _write(self, data: str) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()

    async def append(self, line: PushResultLine) -> None:
        data = line.to_json() + "\n"
        async with self._lock:
            await asyncio.to_thread(self._write, data)
