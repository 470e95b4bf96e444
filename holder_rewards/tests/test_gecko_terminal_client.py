from __future__ import annotations

import asyncio

import httpx
import pytest

from holder_rewards.core.clients.GeckoTerminalClient import GeckoTerminalClient

TOKEN = "0x098a75baeddec78f9a8d0830d6b86eac5cc8894e"
POOL = "0xff716930eefb37b5b4ac55b1901dc5704b098d84"


def _client(handler) -> GeckoTerminalClient:
    return GeckoTerminalClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


@pytest.mark.asyncio
async def test_token_price_is_cached():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(
            200,
            json={"data": {"attributes": {"token_prices": {TOKEN: "0.42"}}}},
        )

    client = _client(handler)
    assert await client.get_price_usd(TOKEN) == pytest.approx(0.42)
    assert await client.get_price_usd(TOKEN.upper().replace("0X", "0x")) == pytest.approx(0.42)
    assert len(calls) == 1
    assert calls[0].endswith(f"/simple/networks/berachain/token_price/{TOKEN}")
    await client.close()


@pytest.mark.asyncio
async def test_pool_price_uses_base_token_price():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith(f"/networks/berachain/pools/{POOL}")
        return httpx.Response(
            200, json={"data": {"attributes": {"base_token_price_usd": "1.25"}}}
        )

    client = _client(handler)
    assert await client.get_price_usd(TOKEN, pool_address=POOL) == pytest.approx(1.25)
    await client.close()


@pytest.mark.asyncio
async def test_serves_stale_price_when_refresh_fails():
    responses = iter(
        [
            httpx.Response(
                200, json={"data": {"attributes": {"token_prices": {TOKEN: "2.0"}}}}
            ),
            httpx.Response(503),
        ]
    )
    client = GeckoTerminalClient(
        ttl_s=0,
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: next(responses))),
    )
    assert await client.get_price_usd(TOKEN) == 2.0
    assert await client.get_price_usd(TOKEN) == 2.0
    await client.close()


@pytest.mark.asyncio
async def test_missing_price_raises_without_cache():
    client = _client(
        lambda r: httpx.Response(200, json={"data": {"attributes": {"token_prices": {}}}})
    )
    with pytest.raises(ValueError):
        await client.get_price_usd(TOKEN)
    await client.close()


@pytest.mark.asyncio
async def test_stale_price_expires():
    responses = iter(
        [
            httpx.Response(
                200, json={"data": {"attributes": {"token_prices": {TOKEN: "2.0"}}}}
            ),
            httpx.Response(503),
        ]
    )
    client = GeckoTerminalClient(
        ttl_s=0,
        stale_ttl_s=0.05,
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: next(responses))),
    )
    assert await client.get_price_usd(TOKEN) == 2.0
    await asyncio.sleep(0.2)
    with pytest.raises(httpx.HTTPStatusError):
        await client.get_price_usd(TOKEN)
    await client.close()


@pytest.mark.asyncio
async def test_clients_do_not_share_cached_prices():
    def handler_for(price: str):
        return lambda r: httpx.Response(
            200, json={"data": {"attributes": {"token_prices": {TOKEN: price}}}}
        )

    first = _client(handler_for("1.0"))
    second = _client(handler_for("3.0"))
    assert await first.get_price_usd(TOKEN) == 1.0
    assert await second.get_price_usd(TOKEN) == 3.0
    await first.close()
    await second.close()
