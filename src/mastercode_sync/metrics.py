"""In-memory run metrics.

Asyncio is single-threaded, so plain dicts are safe; no locking needed.
"""

import time

_start_time = time.monotonic()


def _empty() -> dict:
    return {
        "rows_created": 0,
        "rows_skipped": 0,
        "rows_failed": 0,
        "row_errors_by_code": {},
        "push_succeeded": 0,
        "push_failed": 0,
        "push_retries": 0,
    }


_metrics: dict = _empty()


def record_row_created() -> None:
    _metrics["rows_created"] += 1


def record_row_skipped() -> None:
    _metrics["rows_skipped"] += 1


def record_row_failed(code: str) -> None:
    _metrics["rows_failed"] += 1
    by_code = _metrics["row_errors_by_code"]
    by_code[code] = by_code.get(code, 0) + 1


def record_push_succeeded() -> None:
    _metrics["push_succeeded"] += 1


def record_push_failed() -> None:
    _metrics["push_failed"] += 1


def record_push_retry() -> None:
    _metrics["push_retries"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        **{key: value for key, value in _metrics.items() if key != "row_errors_by_code"},
        "row_errors_by_code": dict(_metrics["row_errors_by_code"]),
    }


def reset_metrics() -> None:
    _metrics.clear()
    _metrics.update(_empty())
