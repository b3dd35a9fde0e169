from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from mastercode_sync.config import ImwebSettings
from mastercode_sync.sync_client import (
    ImwebSyncClient,
    SimulatedSyncClient,
    SyncError,
    create_sync_client,
)

SETTINGS = ImwebSettings(
    base_url="https://api.imweb.test",
    client_id="key-1",
    client_secret="secret-1",
    shop_id="shop-9",
    timeout_seconds=0.5,
)


class FakeImweb:
    """Scripted Imweb API behind httpx.MockTransport."""

    def __init__(self, *, token_ttl: int = 3600, patch_statuses=()) -> None:
        self.token_ttl = token_ttl
        self.patch_statuses = list(patch_statuses)
        self.auth_requests: list[dict] = []
        self.patch_requests: list[httpx.Request] = []
        self.auth_delay = 0.0
        self._issued = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v2/auth":
            self.auth_requests.append(json.loads(request.content))
            if self.auth_delay:
                await asyncio.sleep(self.auth_delay)
            self._issued += 1
            return httpx.Response(
                200,
                json={"data": {"access_token": f"tok-{self._issued}", "expires_in": self.token_ttl}},
            )
        self.patch_requests.append(request)
        status = self.patch_statuses.pop(0) if self.patch_statuses else 200
        if status == 200:
            return httpx.Response(200, json={"code": 200})
        return httpx.Response(status, text="nope " * 200)


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _client(api: FakeImweb, clock=None) -> ImwebSyncClient:
    http = httpx.AsyncClient(
        base_url=SETTINGS.base_url, transport=httpx.MockTransport(api.handler)
    )
    kwargs = {"clock": clock} if clock is not None else {}
    return ImwebSyncClient(SETTINGS, http_client=http, **kwargs)


@pytest.mark.asyncio
async def test_update_sends_code_with_token_headers():
    api = FakeImweb()
    client = _client(api)

    await client.update_code("1001", "CATE9-00001")

    assert api.auth_requests == [{"key": "key-1", "secret": "secret-1"}]
    (request,) = api.patch_requests
    assert request.method == "PATCH"
    assert request.url.path == "/v2/shop/products/1001"
    assert json.loads(request.content) == {"custom_prod_code": "CATE9-00001"}
    assert request.headers["access-token"] == "tok-1"
    assert request.headers["Authorization"] == "Bearer tok-1"
    assert request.headers["X-Shop-Id"] == "shop-9"


@pytest.mark.asyncio
async def test_token_is_cached_between_calls():
    api = FakeImweb()
    client = _client(api)

    await client.update_code("1", "CATE9-00001")
    await client.update_code("2", "CATE9-00002")

    assert client.token_fetches == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh():
    api = FakeImweb()
    api.auth_delay = 0.05
    client = _client(api)

    tokens = await asyncio.gather(*(client.access_token() for _ in range(5)))

    assert tokens == ["tok-1"] * 5
    assert client.token_fetches == 1


@pytest.mark.asyncio
async def test_token_refreshes_before_expiry():
    clock = ManualClock()
    api = FakeImweb(token_ttl=600)
    client = _client(api, clock=clock)

    assert await client.access_token() == "tok-1"
    clock.now = 500.0
    assert await client.access_token() == "tok-1"
    # Inside the refresh margin.
    clock.now = 541.0
    assert await client.access_token() == "tok-2"
    assert client.token_fetches == 2


@pytest.mark.asyncio
async def test_token_at_top_level_and_default_ttl():
    clock = ManualClock()

    async def handler(request):
        return httpx.Response(200, json={"access_token": "flat"})

    http = httpx.AsyncClient(base_url=SETTINGS.base_url, transport=httpx.MockTransport(handler))
    client = ImwebSyncClient(SETTINGS, http_client=http, clock=clock)

    assert await client.access_token() == "flat"
    clock.now = 3500.0
    await client.access_token()
    assert client.token_fetches == 1


@pytest.mark.asyncio
async def test_non_success_response_is_sync_error_with_status_and_body():
    api = FakeImweb(patch_statuses=[500])
    client = _client(api)

    with pytest.raises(SyncError) as exc_info:
        await client.update_code("1001", "CATE9-00001")

    err = exc_info.value
    assert err.status == 500
    assert err.body.startswith("nope")
    text = str(err)
    assert "status=500" in text
    assert len(text) < 600


@pytest.mark.asyncio
async def test_unauthorized_invalidates_token():
    api = FakeImweb(patch_statuses=[401, 200])
    client = _client(api)

    with pytest.raises(SyncError):
        await client.update_code("1001", "CATE9-00001")
    await client.update_code("1001", "CATE9-00001")

    assert client.token_fetches == 2
    assert api.patch_requests[1].headers["access-token"] == "tok-2"


@pytest.mark.asyncio
async def test_rejected_token_request():
    async def handler(request):
        return httpx.Response(403, text="bad key")

    http = httpx.AsyncClient(base_url=SETTINGS.base_url, transport=httpx.MockTransport(handler))
    client = ImwebSyncClient(SETTINGS, http_client=http)

    with pytest.raises(SyncError, match="token request rejected") as exc_info:
        await client.update_code("1001", "CATE9-00001")
    assert exc_info.value.status == 403


@pytest.mark.asyncio
async def test_slow_update_times_out():
    api = FakeImweb()

    async def handler(request):
        if request.url.path == "/v2/auth":
            return await api.handler(request)
        await asyncio.sleep(5)
        return httpx.Response(200)

    http = httpx.AsyncClient(base_url=SETTINGS.base_url, transport=httpx.MockTransport(handler))
    client = ImwebSyncClient(SETTINGS, http_client=http)

    with pytest.raises(SyncError, match="timed out"):
        await client.update_code("1001", "CATE9-00001")


@pytest.mark.asyncio
async def test_transport_error_is_sync_error():
    async def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(base_url=SETTINGS.base_url, transport=httpx.MockTransport(handler))
    client = ImwebSyncClient(SETTINGS, http_client=http)

    with pytest.raises(SyncError, match="token request failed"):
        await client.access_token()


@pytest.mark.asyncio
async def test_factory_picks_client_by_settings():
    simulated = create_sync_client(None)
    assert isinstance(simulated, SimulatedSyncClient)

    real = create_sync_client(SETTINGS)
    try:
        assert isinstance(real, ImwebSyncClient)
    finally:
        await real.aclose()
