"""Shared in-memory stand-ins for the persistence boundary and time."""

from __future__ import annotations

import copy
import itertools
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from mastercode_sync import metrics
from mastercode_sync.code_issuer import IssuedCode, format_master_code
from mastercode_sync.row_validation import ImwebColumns, ProductIntent
from mastercode_sync.store import ExistingMapping, PushCandidate


@dataclass
class FakeMapping:
    map_id: str
    product_id: str
    system: str
    external_id: str
    external_url: str | None
    source_of_truth: str
    raw_snapshot: dict[str, Any]
    created_at: datetime
    last_sync_direction: str | None = None
    last_synced_at: datetime | None = None


@dataclass
class FakeProduct:
    id: str
    master_code: str
    intent: ProductIntent
    images: list[str] = field(default_factory=list)


class _Transaction:
    def __init__(self, store: "InMemoryStore") -> None:
        self.store = store
        self._snapshot: dict[str, Any] | None = None

    async def __aenter__(self):
        self._snapshot = self.store.snapshot()
        self.store.transactions_opened += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.store.restore(self._snapshot)
            self.store.rollbacks += 1
        return False


class InMemoryStore:
    """Implements both the import and push store protocols."""

    def __init__(self) -> None:
        self.products: dict[str, FakeProduct] = {}
        self.mappings: dict[tuple[str, str], FakeMapping] = {}
        self.sequences: dict[str, int] = {}
        self.transactions_opened = 0
        self.rollbacks = 0
        self.mark_pushed_calls: list[str] = []
        self._clock = itertools.count()
        self.fail_create_with: Exception | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "products": copy.deepcopy(self.products),
            "mappings": copy.deepcopy(self.mappings),
            "sequences": dict(self.sequences),
        }

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.products = snapshot["products"]
        self.mappings = snapshot["mappings"]
        self.sequences = snapshot["sequences"]

    def transaction(self) -> _Transaction:
        return _Transaction(self)

    async def find_external_map(self, system, external_id):
        mapping = self.mappings.get((system, external_id))
        if mapping is None:
            return None
        product = self.products[mapping.product_id]
        return ExistingMapping(
            map_id=mapping.map_id,
            product_id=mapping.product_id,
            master_code=product.master_code,
        )

    async def master_code_exists(self, master_code: str) -> bool:
        return any(p.master_code == master_code for p in self.products.values())

    async def issue_master_code(self, category_id: str) -> IssuedCode:
        sequence = self.sequences.get(category_id, 0) + 1
        self.sequences[category_id] = sequence
        return IssuedCode(master_code=format_master_code(category_id, sequence), sequence=sequence)

    async def create_product(self, intent, *, master_code, system):
        if self.fail_create_with is not None:
            raise self.fail_create_with
        product_id = str(uuid.uuid4())
        product = FakeProduct(id=product_id, master_code=master_code, intent=intent)
        if intent.thumbnail_url:
            product.images.append(intent.thumbnail_url)
        self.products[product_id] = product
        self.add_mapping(product_id, system, intent.product_id, raw=intent.raw, url=intent.product_url)
        return product_id

    def add_mapping(
        self,
        product_id: str,
        system: str,
        external_id: str,
        *,
        raw: dict[str, Any] | None = None,
        url: str | None = None,
    ) -> FakeMapping:
        created_at = datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=next(self._clock))
        mapping = FakeMapping(
            map_id=str(uuid.uuid4()),
            product_id=product_id,
            system=system,
            external_id=external_id,
            external_url=url,
            source_of_truth=system,
            raw_snapshot=raw or {},
            created_at=created_at,
        )
        self.mappings[(system, external_id)] = mapping
        return mapping

    def add_product(self, external_id: str, master_code: str, system: str = "IMWEB") -> FakeMapping:
        product_id = str(uuid.uuid4())
        intent = ProductIntent(
            product_id=external_id,
            name=f"product {external_id}",
            category_ids=("CATE9",),
            issued_category_id="CATE9",
            current_category_id="CATE9",
            price_sale=1000,
            inventory_track=False,
            stock_qty=None,
            sale_status=None,
            display_status=True,
            description=None,
            option_name=None,
            option_values=(),
            thumbnail_url=None,
            product_url=None,
        )
        self.products[product_id] = FakeProduct(id=product_id, master_code=master_code, intent=intent)
        return self.add_mapping(product_id, system, external_id)

    async def select_push_candidates(self, system, *, only_unsynced, limit):
        rows = [m for m in self.mappings.values() if m.system == system]
        if only_unsynced:
            rows = [
                m
                for m in rows
                if m.last_sync_direction != "PUSH" or m.last_synced_at is None
            ]
        rows.sort(
            key=lambda m: (
                m.last_synced_at is not None,
                m.last_synced_at or datetime.min.replace(tzinfo=UTC),
                m.created_at,
            )
        )
        return [
            PushCandidate(
                map_id=m.map_id,
                external_id=m.external_id,
                product_id=m.product_id,
                master_code=self.products[m.product_id].master_code,
                name=self.products[m.product_id].intent.name,
            )
            for m in rows[:limit]
        ]

    async def mark_pushed(self, map_id: str, synced_at: datetime) -> None:
        self.mark_pushed_calls.append(map_id)
        for mapping in self.mappings.values():
            if mapping.map_id == map_id:
                mapping.last_sync_direction = "PUSH"
                mapping.last_synced_at = synced_at
                mapping.source_of_truth = "MASTER"
                return
        raise KeyError(map_id)


class FakeClock:
    """Frozen monotonic clock; ``sleep`` records delays without waiting."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset_metrics()
    yield
    metrics.reset_metrics()


def imweb_row(**overrides: Any) -> dict[str, Any]:
    """A valid Imweb export row; keyword overrides use column attribute names."""
    cols = ImwebColumns
    row: dict[str, Any] = {
        cols.PRODUCT_ID: "1001",
        cols.NAME: "Karina photocard",
        cols.CATEGORY_IDS: "CATE9,CATE44",
        cols.PRICE_SALE: "12,000",
        cols.INVENTORY_TRACK: "Y",
        cols.STOCK_QTY: "5",
        cols.OPTION_STOCK_QTY: None,
        cols.DISPLAY_STATUS: "Y",
        cols.SALE_STATUS: "판매중",
        cols.DESCRIPTION: "<p>desc</p>",
        cols.OPTION_USED: "N",
        cols.OPTION_NAME: None,
        cols.OPTION_VALUES: None,
        cols.THUMBNAIL_URL: None,
        cols.PRODUCT_URL: None,
    }
    for key, value in overrides.items():
        row[getattr(cols, key)] = value
    return row


@pytest.fixture
def make_row():
    return imweb_row
