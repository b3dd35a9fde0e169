"""Imweb export row validation.

Flow per row: raw cells -> coerced fields -> ProductIntent, or a RowError
carrying one of the stable row error codes. Warnings never stop a row; they
travel with the result so the batch report can record them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Literal

from .canonicalize import canonicalize_option_value, normalize_whitespace
from .categories import CategoryParseError, parse_category_ids

RowErrorCode = Literal[
    "PRODUCT_ID",
    "PRODUCT_NAME",
    "CATEGORY",
    "PRICE",
    "INVENTORY_MISMATCH",
    "OPTION_VALUES",
    "EXISTS",
    "MASTER_CODE_COLLISION",
    "SEQUENCE_EXHAUSTED",
    "UNKNOWN",
]


class ImwebColumns:
    """Column labels of the Imweb product export (external contract)."""

    PRODUCT_ID = "상품번호"
    NAME = "상품명"
    CATEGORY_IDS = "카테고리ID"
    PRICE_SALE = "판매가"
    INVENTORY_TRACK = "재고사용"
    STOCK_QTY = "현재 재고수량"
    OPTION_STOCK_QTY = "필수옵션재고수량합계"
    DISPLAY_STATUS = "진열상태"
    SALE_STATUS = "판매상태"
    DESCRIPTION = "상품상세정보"
    OPTION_USED = "옵션사용"
    OPTION_NAME = "필수옵션명"
    OPTION_VALUES = "필수옵션값"
    THUMBNAIL_URL = "대표이미지URL"
    PRODUCT_URL = "상품URL"


@dataclass(frozen=True)
class OptionValueInput:
    display_value: str
    canonical_value: str


@dataclass(frozen=True)
class ProductIntent:
    product_id: str
    name: str
    category_ids: tuple[str, ...]
    issued_category_id: str
    current_category_id: str
    price_sale: int
    inventory_track: bool
    stock_qty: int | None
    sale_status: str | None
    display_status: bool
    description: str | None
    option_name: str | None
    option_values: tuple[OptionValueInput, ...]
    thumbnail_url: str | None
    product_url: str | None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ValidRow:
    row_number: int
    intent: ProductIntent
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class RowError:
    row_number: int
    code: RowErrorCode
    message: str
    warnings: tuple[str, ...] = ()


RowResult = ValidRow | RowError


class RowValidationError(Exception):
    def __init__(self, *, code: RowErrorCode, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.field = field


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _is_finite(value: int | float | Decimal) -> bool:
    return isinstance(value, int) or math.isfinite(value)


def _number_to_text(value: int | float | Decimal) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_required_string(value: Any, *, field: str, code: RowErrorCode) -> str:
    if value is None:
        return ""
    if _is_number(value) and _is_finite(value):
        return _number_to_text(value)
    if isinstance(value, str):
        return value.strip()
    raise RowValidationError(code=code, message=f"{field} is not a string", field=field)


def coerce_optional_string(value: Any) -> str | None:
    if value is None:
        return None
    if _is_number(value) and _is_finite(value):
        return _number_to_text(value)
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    return None


def normalize_yn(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().upper()


def parse_yn(value: Any, fallback: bool = False) -> bool:
    normalized = normalize_yn(value)
    if normalized == "Y":
        return True
    if normalized == "N":
        return False
    return fallback


def parse_non_negative_int(value: Any) -> int | None:
    """Stock cells: non-negative integers, anything else counts as absent."""
    if _is_number(value):
        if not _is_finite(value):
            return None
        truncated = int(value)
        return truncated if truncated >= 0 else None
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed.isascii() or not trimmed.isdigit():
            return None
        return int(trimmed)
    return None


MAX_PRICE = 2_147_483_647


def parse_price(value: Any) -> int:
    """Sale price cell to a whole amount in ``0..MAX_PRICE``."""
    if isinstance(value, int) and not isinstance(value, bool):
        return _check_price_range(value)
    if _is_number(value):
        numeric = float(value)
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        try:
            numeric = float(cleaned)
        except ValueError:
            raise RowValidationError(
                code="PRICE", message=f"sale price is not a number: {value!r}", field="priceSale"
            ) from None
    else:
        raise RowValidationError(code="PRICE", message="sale price is missing", field="priceSale")

    if not math.isfinite(numeric) or not numeric.is_integer():
        raise RowValidationError(
            code="PRICE", message=f"sale price must be a whole number: {value!r}", field="priceSale"
        )
    return _check_price_range(int(numeric))


def _check_price_range(price: int) -> int:
    if price < 0:
        raise RowValidationError(
            code="PRICE", message="sale price must be 0 or greater", field="priceSale"
        )
    if price > MAX_PRICE:
        raise RowValidationError(
            code="PRICE", message=f"sale price exceeds {MAX_PRICE}", field="priceSale"
        )
    return price


def build_option_values(raw_values: str) -> tuple[OptionValueInput, ...]:
    """Split option values; the first display form of each canonical value wins."""
    seen: set[str] = set()
    result: list[OptionValueInput] = []
    for part in raw_values.split(","):
        display = normalize_whitespace(part)
        if not display:
            continue
        canonical = canonicalize_option_value(display)
        if canonical in seen:
            continue
        seen.add(canonical)
        result.append(OptionValueInput(display_value=display, canonical_value=canonical))
    return tuple(result)


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return _json_safe(float(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def snapshot_row(row: dict[str, Any]) -> dict[str, Any]:
    return {str(key): _json_safe(value) for key, value in row.items()}


def _build_intent(row: dict[str, Any], warnings: list[str]) -> ProductIntent:
    cols = ImwebColumns

    product_id = coerce_required_string(
        row.get(cols.PRODUCT_ID), field=cols.PRODUCT_ID, code="PRODUCT_ID"
    )
    if not product_id:
        raise RowValidationError(code="PRODUCT_ID", message="product id is empty", field=cols.PRODUCT_ID)

    name = coerce_required_string(row.get(cols.NAME), field=cols.NAME, code="PRODUCT_NAME")
    if not name:
        raise RowValidationError(code="PRODUCT_NAME", message="product name is empty", field=cols.NAME)

    try:
        category_ids = parse_category_ids(
            coerce_required_string(
                row.get(cols.CATEGORY_IDS), field=cols.CATEGORY_IDS, code="CATEGORY"
            )
        )
    except CategoryParseError as exc:
        raise RowValidationError(code="CATEGORY", message=str(exc), field=cols.CATEGORY_IDS) from exc
    issued_category_id = category_ids[0]

    price_sale = parse_price(row.get(cols.PRICE_SALE))

    inventory_flag = normalize_yn(row.get(cols.INVENTORY_TRACK))
    if inventory_flag not in {"Y", "N"}:
        warnings.append("inventory flag is not Y/N; treated as N")
    inventory_track = inventory_flag == "Y"

    current_qty = parse_non_negative_int(row.get(cols.STOCK_QTY))
    option_qty = parse_non_negative_int(row.get(cols.OPTION_STOCK_QTY))

    if not inventory_track and (current_qty is not None or option_qty is not None):
        raise RowValidationError(
            code="INVENTORY_MISMATCH",
            message="inventory tracking is off but a stock quantity is present",
            field=cols.INVENTORY_TRACK,
        )

    stock_qty: int | None = None
    if inventory_track:
        if current_qty is not None:
            stock_qty = current_qty
        elif option_qty is not None:
            stock_qty = option_qty
        else:
            warnings.append("inventory tracking is on but no stock quantity is usable; stored as null")

    display_status = parse_yn(row.get(cols.DISPLAY_STATUS), False)
    sale_status = coerce_optional_string(row.get(cols.SALE_STATUS))
    description = coerce_optional_string(row.get(cols.DESCRIPTION))

    option_name: str | None = None
    option_values: tuple[OptionValueInput, ...] = ()
    if parse_yn(row.get(cols.OPTION_USED), False):
        option_name_raw = coerce_optional_string(row.get(cols.OPTION_NAME))
        option_values_raw = coerce_optional_string(row.get(cols.OPTION_VALUES))

        if not option_name_raw:
            warnings.append("options are enabled but the option name is missing; options skipped")
        elif not option_values_raw:
            raise RowValidationError(
                code="OPTION_VALUES",
                message="options are enabled but option values are missing",
                field=cols.OPTION_VALUES,
            )
        else:
            option_values = build_option_values(option_values_raw)
            if not option_values:
                raise RowValidationError(
                    code="OPTION_VALUES",
                    message="option values are empty after normalization",
                    field=cols.OPTION_VALUES,
                )
            option_name = option_name_raw

    return ProductIntent(
        product_id=product_id,
        name=name,
        category_ids=tuple(category_ids),
        issued_category_id=issued_category_id,
        current_category_id=issued_category_id,
        price_sale=price_sale,
        inventory_track=inventory_track,
        stock_qty=stock_qty,
        sale_status=sale_status,
        display_status=display_status,
        description=description,
        option_name=option_name,
        option_values=option_values,
        thumbnail_url=coerce_optional_string(row.get(cols.THUMBNAIL_URL)),
        product_url=coerce_optional_string(row.get(cols.PRODUCT_URL)),
        raw=snapshot_row(row),
    )


def validate_row(row: dict[str, Any], row_number: int) -> RowResult:
    """Validate one export row. Never raises for bad data."""
    warnings: list[str] = []
    try:
        intent = _build_intent(row, warnings)
    except RowValidationError as exc:
        return RowError(
            row_number=row_number,
            code=exc.code,
            message=str(exc),
            warnings=tuple(warnings),
        )
    return ValidRow(row_number=row_number, intent=intent, warnings=tuple(warnings))
