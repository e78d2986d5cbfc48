"""
HTTP sources behind the caches: unit prices and the bulk token list.

Both take the app-scoped httpx.AsyncClient (closed by its owner) and raise on
transport/HTTP errors; malformed payloads read as "no price". The caches
decide what a failure means.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)


class PriceSource(Protocol):
    async def get_unit_price(self, asset_id: str, as_of: int | None = None) -> float | None:
        """USD price of one unit, or None when the source has no price."""
        ...


class JupiterPriceSource:
    """
    Jupiter price API (v2 shape): GET {url}?ids=<mint> ->
    {"data": {"<mint>": {"id": "...", "price": "123.45"}}}.

    Current prices only; as_of is accepted and ignored.
    """

    def __init__(
        self,
        url: str,
        *,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._url = url
        self._client = http_client

    async def get_unit_price(self, asset_id: str, as_of: int | None = None) -> float | None:
        resp = await self._client.get(self._url, params={"ids": asset_id})
        resp.raise_for_status()
        body = resp.json()
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            logger.debug("price_source_bad_payload", asset_id=asset_id)
            return None
        entry = data.get(asset_id)
        if not isinstance(entry, dict):
            return None
        price = entry.get("price")
        if price is None:
            return None
        try:
            return float(price)
        except (TypeError, ValueError):
            logger.debug("price_source_bad_value", asset_id=asset_id, value=str(price))
            return None


class TokenListSource:
    """
    Bulk token list (Jupiter strict list shape): a JSON array of
    {"address", "symbol", "name", "decimals", ...}.
    """

    def __init__(
        self,
        url: str,
        *,
        http_client: httpx.AsyncClient,
    ) -> None:
        self._url = url
        self._client = http_client

    async def load(self) -> list[dict[str, Any]]:
        resp = await self._client.get(self._url)
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict):
            data = data.get("tokens") or []
        return [t for t in data if isinstance(t, dict)] if isinstance(data, list) else []
