"""Database schema for products, external mappings and code sequences.

Applied idempotently on startup; every statement is CREATE ... IF NOT EXISTS.
"""

import logging
from typing import Any

import psycopg

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS products (
        id UUID PRIMARY KEY,
        master_code TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        issued_category_id TEXT NOT NULL,
        current_category_id TEXT NOT NULL,
        category_ids JSONB NOT NULL,
        price_sale INTEGER NOT NULL CHECK (price_sale >= 0),
        inventory_track BOOLEAN NOT NULL DEFAULT FALSE,
        stock_qty INTEGER CHECK (stock_qty >= 0),
        sale_status TEXT,
        display_status BOOLEAN NOT NULL DEFAULT FALSE,
        description TEXT,
        option_name TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT products_stock_requires_tracking
            CHECK (stock_qty IS NULL OR inventory_track),
        CONSTRAINT products_category_ids_not_empty
            CHECK (jsonb_typeof(category_ids) = 'array' AND jsonb_array_length(category_ids) > 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_option_values (
        id UUID PRIMARY KEY,
        product_id UUID NOT NULL REFERENCES products(id) ON DELETE CASCADE,
        option_name TEXT NOT NULL,
        display_value TEXT NOT NULL,
        canonical_value TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (product_id, option_name, canonical_value)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_images (
        id UUID PRIMARY KEY,
        product_id UUID NOT NULL REFERENCES products(id) ON DELETE CASCADE,
        type TEXT NOT NULL,
        storage_key TEXT NOT NULL,
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS external_product_maps (
        id UUID PRIMARY KEY,
        product_id UUID NOT NULL REFERENCES products(id) ON DELETE CASCADE,
        system TEXT NOT NULL,
        external_id TEXT NOT NULL,
        external_url TEXT,
        source_of_truth TEXT NOT NULL CHECK (source_of_truth IN ('IMWEB', 'MASTER')),
        raw_snapshot JSONB,
        last_sync_direction TEXT CHECK (last_sync_direction IN ('PUSH', 'PULL')),
        last_synced_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (system, external_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS external_product_maps_push_candidates
        ON external_product_maps (system, last_synced_at NULLS FIRST, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS code_sequence_by_category (
        id BIGSERIAL PRIMARY KEY,
        issued_category_id TEXT NOT NULL UNIQUE,
        last_seq INTEGER NOT NULL DEFAULT 0 CHECK (last_seq >= 0),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)


async def ensure_schema(conn: psycopg.AsyncConnection[Any]) -> None:
    """Create missing tables and indexes, then commit."""
    async with conn.transaction():
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info("Schema ensured (%d statements)", len(SCHEMA_STATEMENTS))
