from __future__ import annotations

from typing import Any

from .canonicalize import dedupe_preserve_order, normalize_whitespace


class CategoryParseError(ValueError):
    pass


def parse_category_ids(raw: Any) -> list[str]:
    """Split a comma separated category cell into ordered, distinct ids.

    The first id is the category a master code is issued against.
    """
    if not isinstance(raw, str):
        raise CategoryParseError("category id value is empty or not a string")

    parts = [normalize_whitespace(part) for part in raw.split(",")]
    deduped = dedupe_preserve_order(part for part in parts if part)

    if not deduped:
        raise CategoryParseError("category id value has no usable items")

    return deduped
