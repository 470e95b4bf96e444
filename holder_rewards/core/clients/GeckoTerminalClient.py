from __future__ import annotations

import secrets
from typing import Any

import httpx
from aiocache import Cache
from loguru import logger

from holder_rewards.core.constants.base import (
    DEFAULT_HTTP_TIMEOUT,
    PRICE_CACHE_TTL_SECONDS,
    PRICE_STALE_TTL_SECONDS,
)

GECKO_API_BASE_URL = "https://api.geckoterminal.com/api/v2"


class GeckoTerminalClient:
    """USD prices for tokens the program pool cannot price.

    Prices are cached for ``ttl_s``; when a refresh fails the last known price
    is served for up to ``stale_ttl_s``.
    """

    def __init__(
        self,
        *,
        network: str = "berachain",
        base_url: str = GECKO_API_BASE_URL,
        ttl_s: float = PRICE_CACHE_TTL_SECONDS,
        stale_ttl_s: float = PRICE_STALE_TTL_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.network = network
        self.base_url = str(base_url).rstrip("/")
        self.ttl_s = float(ttl_s)
        self.stale_ttl_s = float(stale_ttl_s)
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(DEFAULT_HTTP_TIMEOUT)
        )
        self._cache = Cache(
            Cache.MEMORY, namespace=f"gecko:{network}:{secrets.token_hex(4)}:"
        )

    async def _get_json(self, path: str) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug(f"GET {url}")
        resp = await self.client.get(url, headers={"Accept": "application/json"})
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("GeckoTerminal returned unexpected response type")
        return data

    async def _fetch_token_price(self, token_address: str) -> float:
        addr = token_address.lower()
        data = await self._get_json(
            f"/simple/networks/{self.network}/token_price/{addr}"
        )
        prices = (data.get("data") or {}).get("attributes", {}).get("token_prices") or {}
        return float(prices.get(addr) or 0)

    async def _fetch_pool_base_price(self, pool_address: str) -> float:
        data = await self._get_json(
            f"/networks/{self.network}/pools/{pool_address.lower()}"
        )
        attrs = (data.get("data") or {}).get("attributes") or {}
        return float(attrs.get("base_token_price_usd") or 0)

    async def get_price_usd(
        self, token_address: str, *, pool_address: str | None = None
    ) -> float:
        """Price by token address, or by a pool's base token when ``pool_address`` is set."""
        key = (pool_address or token_address).lower()
        if cached := await self._cache.get(f"price:{key}"):
            return cached

        try:
            if pool_address:
                price = await self._fetch_pool_base_price(pool_address)
            else:
                price = await self._fetch_token_price(token_address)
        except (httpx.HTTPError, ValueError) as exc:
            if stale := await self._cache.get(f"stale:{key}"):
                logger.warning(f"Price refresh failed for {key}, serving stale: {exc}")
                return stale
            raise

        if price <= 0:
            if stale := await self._cache.get(f"stale:{key}"):
                return stale
            raise ValueError(f"No USD price available for {key}")

        if self.ttl_s > 0:
            await self._cache.set(f"price:{key}", price, ttl=self.ttl_s)
        await self._cache.set(f"stale:{key}", price, ttl=self.stale_ttl_s)
        return price

    async def close(self) -> None:
        await self._cache.close()
        await self.client.aclose()
