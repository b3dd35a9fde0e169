"""Push issued master codes back to Imweb.

Candidates are mappings that were never pushed (or whose last sync was not a
push). Each one passes a concurrency gate, then calls the sync client under
the retry policy; every attempt, retries included, first waits for a slot
from the shared rate limiter. A success stamps the mapping as pushed, which
is what keeps it out of later "only unsynced" runs; a failure leaves it
untouched so the next run picks it up again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from . import metrics
from .reports import PushResultLine, PushResultLog, utc_now
from .store import IMWEB, ExternalSystem, PushCandidate
from .sync_client import SyncClient
from .throttle import RateLimiter, RetryPolicy, Sleep

logger = logging.getLogger(__name__)


class PushStore(Protocol):
    async def select_push_candidates(
        self, system: ExternalSystem, *, only_unsynced: bool, limit: int
    ) -> list[PushCandidate]: ...

    async def mark_pushed(self, map_id: str, synced_at: datetime) -> None: ...


@dataclass(frozen=True)
class PushOptions:
    limit: int = 100
    concurrency: int = 3
    rate_limit: float = 5
    retries: int = 3
    backoff_ms: int = 500
    dry_run: bool = False
    only_unsynced: bool = True

    def normalized(self) -> "PushOptions":
        return PushOptions(
            limit=max(1, self.limit),
            concurrency=max(1, self.concurrency),
            rate_limit=max(1, self.rate_limit),
            retries=max(0, self.retries),
            backoff_ms=max(100, self.backoff_ms),
            dry_run=self.dry_run,
            only_unsynced=self.only_unsynced,
        )


@dataclass(frozen=True)
class PushSummary:
    selected: int
    success: int
    failure: int

    @property
    def exit_code(self) -> int:
        return 0 if self.failure == 0 else 1


class PushBatchRunner:
    def __init__(
        self,
        store: PushStore,
        client: SyncClient,
        results: PushResultLog,
        options: PushOptions | None = None,
        *,
        system: ExternalSystem = IMWEB,
        rate_limiter: RateLimiter | None = None,
        sleep: Sleep = asyncio.sleep,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.results = results
        self.options = (options or PushOptions()).normalized()
        self.system = system
        self.rate_limiter = rate_limiter or RateLimiter(self.options.rate_limit, sleep=sleep)
        self.retry_policy = RetryPolicy(
            retries=self.options.retries,
            initial_backoff_ms=self.options.backoff_ms,
        )
        self._sleep = sleep
        self._now = now

    async def run(self) -> PushSummary:
        opts = self.options
        targets = await self.store.select_push_candidates(
            self.system, only_unsynced=opts.only_unsynced, limit=opts.limit
        )
        if not targets:
            logger.info("No mappings to push")
            return PushSummary(selected=0, success=0, failure=0)

        logger.info(
            "Pushing %d mappings (dry_run=%s, concurrency=%d, rate=%s/s)",
            len(targets),
            opts.dry_run,
            opts.concurrency,
            opts.rate_limit,
        )

        gate = asyncio.Semaphore(opts.concurrency)

        async def _bounded(target: PushCandidate) -> PushResultLine:
            async with gate:
                return await self.process_one(target)

        lines = await asyncio.gather(*(_bounded(target) for target in targets))
        success = sum(1 for line in lines if line.status == "success")
        summary = PushSummary(selected=len(targets), success=success, failure=len(lines) - success)
        logger.info("Push finished: success=%d failure=%d", summary.success, summary.failure)
        return summary

    async def process_one(self, target: PushCandidate) -> PushResultLine:
        """Push one mapping; never raises, always appends one result record."""
        line = PushResultLine(
            timestamp=self._now(),
            external_id=target.external_id,
            product_id=target.product_id,
            master_code=target.master_code,
        )
        try:
            if not target.master_code:
                raise ValueError("master code is empty")

            if self.options.dry_run:
                await self.rate_limiter.wait()
                logger.info("[DRY-RUN] %s => %s", target.external_id, target.master_code)
            else:
                await self._call_with_retry(target)
                await self.store.mark_pushed(target.map_id, self._now())
        except Exception as exc:
            line = line.model_copy(update={"status": "error", "message": str(exc)})
            await self.results.append(line)
            metrics.record_push_failed()
            logger.error(
                "Push failed for %s: %s",
                target.external_id,
                exc,
                extra={"mc_external_id": target.external_id},
            )
            return line

        await self.results.append(line)
        metrics.record_push_succeeded()
        return line

    async def _attempt(self, target: PushCandidate) -> None:
        await self.rate_limiter.wait()
        await self.client.update_code(target.external_id, target.master_code)

    def _call_with_retry(self, target: PushCandidate) -> Awaitable[None]:
        return self.retry_policy.run(
            lambda: self._attempt(target),
            sleep=self._sleep,
            on_retry=lambda attempt, delay, exc: metrics.record_push_retry(),
        )
