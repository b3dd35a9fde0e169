"""PostgreSQL persistence boundary for import and push runs."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncContextManager, Literal

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

from .code_issuer import IssuedCode, issue_master_code
from .row_validation import ProductIntent

logger = logging.getLogger(__name__)

ExternalSystem = Literal["IMWEB"]
SourceOfTruth = Literal["IMWEB", "MASTER"]
SyncDirection = Literal["PUSH", "PULL"]

IMWEB: ExternalSystem = "IMWEB"


def _new_id() -> str:
    try:
        return str(uuid.uuid7())
    except AttributeError:
        return str(uuid.uuid4())


@dataclass(frozen=True)
class ExistingMapping:
    map_id: str
    product_id: str
    master_code: str


@dataclass(frozen=True)
class PushCandidate:
    map_id: str
    external_id: str
    product_id: str
    master_code: str
    name: str


class ProductStore:
    """Product, mapping and sequence access over one async connection."""

    def __init__(self, conn: psycopg.AsyncConnection[Any]) -> None:
        self.conn = conn

    def transaction(self) -> AsyncContextManager[Any]:
        return self.conn.transaction()

    async def find_external_map(
        self, system: ExternalSystem, external_id: str
    ) -> ExistingMapping | None:
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT m.id, m.product_id, p.master_code
                FROM external_product_maps m
                JOIN products p ON p.id = m.product_id
                WHERE m.system = %s
                  AND m.external_id = %s
                """,
                (system, external_id),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return ExistingMapping(
            map_id=str(row["id"]),
            product_id=str(row["product_id"]),
            master_code=str(row["master_code"]),
        )

    async def master_code_exists(self, master_code: str) -> bool:
        async with self.conn.cursor() as cur:
            await cur.execute(
                "SELECT 1 FROM products WHERE master_code = %s LIMIT 1",
                (master_code,),
            )
            return await cur.fetchone() is not None

    async def issue_master_code(self, category_id: str) -> IssuedCode:
        return await issue_master_code(self.conn, category_id)

    async def create_product(
        self,
        intent: ProductIntent,
        *,
        master_code: str,
        system: ExternalSystem,
    ) -> str:
        """Insert product, option values, thumbnail and external mapping."""
        product_id = _new_id()
        async with self.conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO products (
                    id, master_code, name, issued_category_id, current_category_id,
                    category_ids, price_sale, inventory_track, stock_qty, sale_status,
                    display_status, description, option_name
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    product_id,
                    master_code,
                    intent.name,
                    intent.issued_category_id,
                    intent.current_category_id,
                    Json(list(intent.category_ids)),
                    intent.price_sale,
                    intent.inventory_track,
                    intent.stock_qty,
                    intent.sale_status,
                    intent.display_status,
                    intent.description,
                    intent.option_name,
                ),
            )

            if intent.option_name and intent.option_values:
                await cur.executemany(
                    """
                    INSERT INTO product_option_values (
                        id, product_id, option_name, display_value, canonical_value
                    )
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    [
                        (
                            _new_id(),
                            product_id,
                            intent.option_name,
                            value.display_value,
                            value.canonical_value,
                        )
                        for value in intent.option_values
                    ],
                )

            if intent.thumbnail_url:
                await cur.execute(
                    """
                    INSERT INTO product_images (id, product_id, type, storage_key, sort_order)
                    VALUES (%s, %s, 'THUMBNAIL', %s, 0)
                    """,
                    (_new_id(), product_id, intent.thumbnail_url),
                )

            await cur.execute(
                """
                INSERT INTO external_product_maps (
                    id, product_id, system, external_id, external_url,
                    source_of_truth, raw_snapshot
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    _new_id(),
                    product_id,
                    system,
                    intent.product_id,
                    intent.product_url,
                    system,
                    Json(intent.raw),
                ),
            )
        return product_id

    async def select_push_candidates(
        self,
        system: ExternalSystem,
        *,
        only_unsynced: bool,
        limit: int,
    ) -> list[PushCandidate]:
        unsynced_filter = (
            """
              AND (m.last_sync_direction IS NULL
                   OR m.last_sync_direction <> 'PUSH'
                   OR m.last_synced_at IS NULL)
            """
            if only_unsynced
            else ""
        )
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                SELECT m.id, m.external_id, p.id AS product_id, p.master_code, p.name
                FROM external_product_maps m
                JOIN products p ON p.id = m.product_id
                WHERE m.system = %s
                {unsynced_filter}
                ORDER BY m.last_synced_at ASC NULLS FIRST, m.created_at ASC
                LIMIT %s
                """,
                (system, limit),
            )
            rows = await cur.fetchall()
        return _candidates(rows)

    async def mark_pushed(self, map_id: str, synced_at: datetime) -> None:
        async with self.conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE external_product_maps
                SET last_sync_direction = 'PUSH',
                    last_synced_at = %s,
                    source_of_truth = 'MASTER',
                    updated_at = NOW()
                WHERE id = %s
                """,
                (synced_at, map_id),
            )


def _candidates(rows: Iterable[dict[str, Any]]) -> list[PushCandidate]:
    return [
        PushCandidate(
            map_id=str(row["id"]),
            external_id=str(row["external_id"]),
            product_id=str(row["product_id"]),
            master_code=str(row["master_code"] or ""),
            name=str(row["name"]),
        )
        for row in rows
    ]
