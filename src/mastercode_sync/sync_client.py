"""Clients that write a master code back to the Imweb product.

Two variants share the ``SyncClient`` protocol: a simulated client for
offline runs and an httpx-based client for the real API. The factory picks
the networked client only when every Imweb setting is configured.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .config import ImwebSettings

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 500


class SyncError(Exception):
    """A failed code update: non-2xx response, timeout or transport error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            base = f"{base} (status={self.status})"
        if self.body:
            base = f"{base}: {self.body[:_BODY_PREVIEW_CHARS]}"
        return base


class SyncClient(Protocol):
    async def update_code(self, external_id: str, master_code: str) -> None: ...

    async def aclose(self) -> None: ...


class SimulatedSyncClient:
    """Sleeps for a randomized latency and always succeeds."""

    def __init__(
        self,
        latency_ms: int = 100,
        jitter_ms: int = 50,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.latency_ms = latency_ms
        self.jitter_ms = jitter_ms
        self._sleep = sleep
        self.calls: list[tuple[str, str]] = []

    async def update_code(self, external_id: str, master_code: str) -> None:
        jitter = random.randint(0, self.jitter_ms) if self.jitter_ms > 0 else 0
        await self._sleep((self.latency_ms + jitter) / 1000.0)
        self.calls.append((external_id, master_code))
        logger.info("Simulated Imweb update: %s => %s", external_id, master_code)

    async def aclose(self) -> None:
        return None


@dataclass
class _AccessToken:
    value: str
    expires_at: float

    def is_fresh(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


class ImwebSyncClient:
    """Imweb REST client with a cached, proactively refreshed access token.

    Concurrent callers that find the token stale share one in-flight refresh.
    """

    DEFAULT_TOKEN_TTL_SECONDS = 3600.0

    def __init__(
        self,
        settings: ImwebSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
        )
        self._clock = clock
        self._token: _AccessToken | None = None
        self._refresh_task: asyncio.Task[str] | None = None
        self.token_fetches = 0

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _fetch_token(self) -> str:
        self.token_fetches += 1
        try:
            async with asyncio.timeout(self.settings.timeout_seconds):
                resp = await self._http.post(
                    "/v2/auth",
                    json={
                        "key": self.settings.client_id,
                        "secret": self.settings.client_secret,
                    },
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise SyncError(
                f"token request timed out after {self.settings.timeout_seconds}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise SyncError(f"token request failed: {exc}") from exc

        if not resp.is_success:
            raise SyncError("token request rejected", status=resp.status_code, body=resp.text)

        try:
            payload: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise SyncError("token response is not JSON", status=resp.status_code, body=resp.text) from exc

        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        access_token = str(data.get("access_token") or "").strip()
        if not access_token:
            raise SyncError("token response missing access_token", status=resp.status_code, body=resp.text)

        ttl = float(data.get("expires_in") or self.DEFAULT_TOKEN_TTL_SECONDS)
        self._token = _AccessToken(value=access_token, expires_at=self._clock() + ttl)
        logger.info("Imweb access token refreshed (ttl=%.0fs)", ttl)
        return access_token

    def _clear_refresh(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def access_token(self) -> str:
        token = self._token
        if token is not None and token.is_fresh(
            self._clock(), self.settings.token_refresh_margin_seconds
        ):
            return token.value

        if self._refresh_task is None:
            task = asyncio.create_task(self._fetch_token())
            task.add_done_callback(self._clear_refresh)
            self._refresh_task = task
        return await asyncio.shield(self._refresh_task)

    def invalidate_token(self) -> None:
        self._token = None

    async def update_code(self, external_id: str, master_code: str) -> None:
        token = await self.access_token()
        headers = {
            "access-token": token,
            "Authorization": f"Bearer {token}",
            "X-Shop-Id": self.settings.shop_id,
        }
        try:
            async with asyncio.timeout(self.settings.timeout_seconds):
                resp = await self._http.patch(
                    f"/v2/shop/products/{external_id}",
                    json={"custom_prod_code": master_code},
                    headers=headers,
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise SyncError(
                f"update of {external_id} timed out after {self.settings.timeout_seconds}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise SyncError(f"update of {external_id} failed: {exc}") from exc

        if resp.status_code == 401:
            self.invalidate_token()
        if not resp.is_success:
            raise SyncError(
                f"update of {external_id} rejected", status=resp.status_code, body=resp.text
            )
        logger.debug("Imweb product %s updated to %s", external_id, master_code)


def create_sync_client(settings: ImwebSettings | None) -> SyncClient:
    if settings is None:
        logger.info("Imweb settings incomplete; using simulated sync client")
        return SimulatedSyncClient()
    logger.info("Using Imweb API at %s (shop=%s)", settings.base_url, settings.shop_id)
    return ImwebSyncClient(settings)
