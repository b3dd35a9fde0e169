"""Category-scoped master code allocation.

Each category owns one row in code_sequence_by_category. Allocation is a
single upsert that creates the row at 1 or increments it, so the row lock
taken by PostgreSQL serializes concurrent importers (including separate
processes). The caller owns the transaction: a rolled back row also rolls
back its sequence number.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import psycopg

logger = logging.getLogger(__name__)

SEQUENCE_DIGITS = 5
MAX_SEQUENCE = 10**SEQUENCE_DIGITS - 1

_ISSUE_SQL = """
    INSERT INTO code_sequence_by_category (issued_category_id, last_seq)
    VALUES (%s, 1)
    ON CONFLICT (issued_category_id)
    DO UPDATE SET last_seq = code_sequence_by_category.last_seq + 1,
                  updated_at = NOW()
    RETURNING last_seq
"""


class SequenceExhaustedError(Exception):
    def __init__(self, category_id: str, sequence: int) -> None:
        super().__init__(
            f"category {category_id} exhausted its {SEQUENCE_DIGITS}-digit "
            f"master code range (next sequence {sequence})"
        )
        self.category_id = category_id
        self.sequence = sequence


@dataclass(frozen=True)
class IssuedCode:
    master_code: str
    sequence: int


def format_master_code(category_id: str, sequence: int) -> str:
    if sequence < 1:
        raise ValueError(f"sequence must be positive, got {sequence}")
    if sequence > MAX_SEQUENCE:
        raise SequenceExhaustedError(category_id, sequence)
    return f"{category_id}-{sequence:0{SEQUENCE_DIGITS}d}"


async def issue_master_code(
    conn: psycopg.AsyncConnection[Any], category_id: str
) -> IssuedCode:
    """Allocate the next master code for ``category_id`` in the open transaction."""
    category_id = category_id.strip()
    if not category_id:
        raise ValueError("category_id must not be empty")

    async with conn.cursor() as cur:
        await cur.execute(_ISSUE_SQL, (category_id,))
        row = await cur.fetchone()
    if row is None:
        raise RuntimeError(f"sequence upsert returned no row for {category_id}")

    sequence = int(row[0])
    master_code = format_master_code(category_id, sequence)
    logger.debug("Issued %s (category=%s seq=%d)", master_code, category_id, sequence)
    return IssuedCode(master_code=master_code, sequence=sequence)
