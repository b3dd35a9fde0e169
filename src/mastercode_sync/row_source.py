"""Tabular row source for Imweb product exports (.xlsx or .csv).

The first row holds the column labels; every following row becomes a
mapping of label -> raw cell value, with empty cells as None. Blank rows
are dropped; kept rows remember their sheet row number.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

from openpyxl import load_workbook


class RowSourceError(Exception):
    pass


def _rows_from_matrix(matrix: list[tuple[Any, ...]]) -> list[tuple[int, dict[str, Any]]]:
    if not matrix:
        return []

    header = [str(cell).strip() if cell is not None else "" for cell in matrix[0]]
    rows: list[tuple[int, dict[str, Any]]] = []
    for row_number, values in enumerate(matrix[1:], start=2):
        if all(value is None or (isinstance(value, str) and not value.strip()) for value in values):
            continue
        row: dict[str, Any] = {}
        for index, label in enumerate(header):
            if not label:
                continue
            value = values[index] if index < len(values) else None
            if isinstance(value, str) and value == "":
                value = None
            row[label] = value
        rows.append((row_number, row))
    return rows


def _load_xlsx(path: Path, sheet_name: str | None) -> list[tuple[int, dict[str, Any]]]:
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except Exception as exc:
        raise RowSourceError(f"cannot open workbook {path}: {exc}") from exc

    try:
        if not workbook.sheetnames:
            raise RowSourceError(f"workbook {path} has no worksheets")
        name = sheet_name or workbook.sheetnames[0]
        if name not in workbook.sheetnames:
            raise RowSourceError(f"sheet {name!r} not found in {path}")
        sheet = workbook[name]
        matrix = [tuple(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()
    return _rows_from_matrix(matrix)


def _load_csv(path: Path) -> list[tuple[int, dict[str, Any]]]:
    try:
        with path.open(newline="", encoding="utf-8-sig") as handle:
            matrix = [tuple(row) for row in csv.reader(handle)]
    except (OSError, UnicodeDecodeError) as exc:
        raise RowSourceError(f"cannot read {path}: {exc}") from exc
    return _rows_from_matrix(matrix)


def load_numbered_rows(
    path: str | Path, sheet_name: str | None = None
) -> list[tuple[int, dict[str, Any]]]:
    """Rows paired with their 1-based sheet row number (the header is row 1)."""
    path = Path(path)
    if not path.is_file():
        raise RowSourceError(f"source file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xlsm"}:
        return _load_xlsx(path, sheet_name)
    if suffix == ".csv":
        return _load_csv(path)
    raise RowSourceError(f"unsupported source format: {suffix or path.name}")


def load_rows(path: str | Path, sheet_name: str | None = None) -> list[dict[str, Any]]:
    return [row for _, row in load_numbered_rows(path, sheet_name)]
