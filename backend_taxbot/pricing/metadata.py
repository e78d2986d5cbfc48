"""
Token metadata resolver: mint -> (symbol, name, decimals).

Resolution order, first hit wins:
  1. bulk token list, loaded lazily once per process;
  2. on-chain lookup (DAS getAsset);
  3. synthetic fallback from the mint prefix.
Results are cached per mint for the life of the process. A bulk list that
fails to load behaves like an empty list.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from backend_taxbot.core.exceptions import RpcError, UpstreamUnavailable
from backend_taxbot.pricing.sources import TokenListSource
from backend_taxbot.solana_client.models import NATIVE_SOL_MINT
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

FALLBACK_DECIMALS = 0
FALLBACK_SYMBOL_LEN = 4

OnchainLookup = Callable[[str], Awaitable[dict[str, Any] | None]]


@dataclass(frozen=True)
class TokenMetadata:
    symbol: str
    name: str
    decimals: int
    source: str = "token_list"  # token_list | onchain | fallback | builtin


_BUILTIN: dict[str, TokenMetadata] = {
    NATIVE_SOL_MINT: TokenMetadata(symbol="SOL", name="Solana", decimals=9, source="builtin"),
}


def fallback_metadata(asset_id: str) -> TokenMetadata:
    """Synthetic metadata from the mint itself (truncated-identifier symbol)."""
    prefix = asset_id[:FALLBACK_SYMBOL_LEN]
    return TokenMetadata(
        symbol=prefix,
        name=f"Unknown token {prefix}...{asset_id[-FALLBACK_SYMBOL_LEN:]}",
        decimals=FALLBACK_DECIMALS,
        source="fallback",
    )


def metadata_from_asset(asset: dict[str, Any]) -> TokenMetadata | None:
    """
    Extract symbol/name/decimals from a DAS getAsset result.

    Symbol and name come from content.metadata (or token_info.symbol);
    decimals from token_info. None when neither symbol nor name is present.
    """
    content = asset.get("content") or {}
    if not isinstance(content, dict):
        content = {}
    metadata = content.get("metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}
    token_info = asset.get("token_info") or {}
    if not isinstance(token_info, dict):
        token_info = {}

    symbol = (metadata.get("symbol") or token_info.get("symbol") or "").strip()
    name = (metadata.get("name") or "").strip()
    if not symbol and not name:
        return None
    raw_decimals = token_info.get("decimals")
    try:
        decimals = int(raw_decimals) if raw_decimals is not None else FALLBACK_DECIMALS
    except (TypeError, ValueError):
        decimals = FALLBACK_DECIMALS
    return TokenMetadata(
        symbol=symbol or name[:10],
        name=name or symbol,
        decimals=decimals,
        source="onchain",
    )


class MetadataResolver:
    """Process-wide metadata cache. Create once per app and inject."""

    def __init__(
        self,
        token_list: TokenListSource | None = None,
        onchain_lookup: OnchainLookup | None = None,
    ) -> None:
        self._token_list = token_list
        self._onchain_lookup = onchain_lookup
        self._index: dict[str, TokenMetadata] | None = None
        self._index_lock = asyncio.Lock()
        self._cache: dict[str, TokenMetadata] = {}
        self.onchain_lookups = 0

    @property
    def index_loaded(self) -> bool:
        return self._index is not None

    async def _ensure_index(self) -> dict[str, TokenMetadata]:
        if self._index is not None:
            return self._index
        async with self._index_lock:
            if self._index is None:
                self._index = await self._load_index()
        return self._index

    async def _load_index(self) -> dict[str, TokenMetadata]:
        if self._token_list is None:
            return {}
        try:
            tokens = await self._token_list.load()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("token_list_load_failed", error=str(e))
            return {}
        index: dict[str, TokenMetadata] = {}
        for t in tokens:
            address = t.get("address") or t.get("mint")
            if not address:
                continue
            try:
                decimals = int(t.get("decimals") or 0)
            except (TypeError, ValueError):
                decimals = 0
            index[str(address)] = TokenMetadata(
                symbol=str(t.get("symbol") or ""),
                name=str(t.get("name") or ""),
                decimals=decimals,
            )
        logger.info("token_list_loaded", token_count=len(index))
        return index

    async def _lookup_onchain(self, asset_id: str) -> TokenMetadata | None:
        if self._onchain_lookup is None:
            return None
        self.onchain_lookups += 1
        try:
            asset = await self._onchain_lookup(asset_id)
        except (UpstreamUnavailable, RpcError, httpx.HTTPError, ValueError) as e:
            logger.info("metadata_onchain_failed", asset_id=asset_id, error=str(e))
            return None
        if not asset:
            return None
        return metadata_from_asset(asset)

    async def resolve(self, asset_id: str) -> TokenMetadata:
        cached = self._cache.get(asset_id)
        if cached is not None:
            return cached
        meta = _BUILTIN.get(asset_id)
        if meta is None:
            index = await self._ensure_index()
            meta = index.get(asset_id)
        if meta is None:
            meta = await self._lookup_onchain(asset_id)
        if meta is None:
            meta = fallback_metadata(asset_id)
            logger.debug("metadata_fallback", asset_id=asset_id)
        self._cache[asset_id] = meta
        return meta
