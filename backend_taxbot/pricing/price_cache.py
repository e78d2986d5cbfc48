"""
TTL price cache in front of a PriceSource.

Keys are (asset_id, time_bucket). With historical pricing off the bucket is
always None, so every lookup of an asset shares one entry; with it on, the
as_of timestamp selects an hourly (configurable) bucket and buckets never
share entries. Entries older than the TTL are ignored and refreshed.

Lookups never raise in the default mode: an unpriced asset returns the
policy default (0.0). In strict mode PriceUnresolved is raised instead.
Concurrent lookups of the same key share one in-flight fetch.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from backend_taxbot.core.exceptions import PriceUnresolved
from backend_taxbot.core.retry import RetryPolicy, retry_async
from backend_taxbot.pricing.sources import PriceSource
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SEC = 300.0
DEFAULT_BUCKET_SEC = 3600

PriceKey = tuple[str, int | None]


@dataclass(frozen=True)
class PriceEntry:
    asset_id: str
    price: float
    fetched_at: float


class PriceCache:
    """Process-wide USD unit price cache. Create once per app and inject."""

    def __init__(
        self,
        source: PriceSource,
        *,
        ttl_sec: float = DEFAULT_TTL_SEC,
        default_price: float = 0.0,
        strict: bool = False,
        historical: bool = False,
        bucket_sec: int = DEFAULT_BUCKET_SEC,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_sec <= 0:
            raise ValueError("ttl_sec must be positive")
        if bucket_sec <= 0:
            raise ValueError("bucket_sec must be positive")
        self._source = source
        self._ttl = ttl_sec
        self._default = default_price
        self._strict = strict
        self._historical = historical
        self._bucket_sec = bucket_sec
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._entries: dict[PriceKey, PriceEntry] = {}
        self._inflight: dict[PriceKey, asyncio.Task[float | None]] = {}
        self.hits = 0
        self.misses = 0

    @property
    def default_price(self) -> float:
        return self._default

    def __len__(self) -> int:
        return len(self._entries)

    def key_for(self, asset_id: str, as_of: int | None = None) -> PriceKey:
        if not self._historical or as_of is None:
            return (asset_id, None)
        return (asset_id, int(as_of) // self._bucket_sec)

    def _fresh(self, key: PriceKey) -> PriceEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= self._ttl:
            return None
        return entry

    def peek(self, asset_id: str, as_of: int | None = None) -> float | None:
        """Cached, unexpired price or None. Never calls the source."""
        entry = self._fresh(self.key_for(asset_id, as_of))
        return entry.price if entry else None

    async def get_price(self, asset_id: str, as_of: int | None = None) -> float:
        key = self.key_for(asset_id, as_of)
        entry = self._fresh(key)
        if entry is not None:
            self.hits += 1
            return entry.price
        self.misses += 1
        price = await self._fetch_shared(key)
        if price is not None:
            return price
        if self._strict:
            raise PriceUnresolved(asset_id)
        logger.info("price_unresolved", asset_id=asset_id, default=self._default)
        return self._default

    async def _fetch_shared(self, key: PriceKey) -> float | None:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key))
            self._inflight[key] = task

            def _done(t: asyncio.Task[float | None], k: PriceKey = key) -> None:
                if self._inflight.get(k) is t:
                    del self._inflight[k]

            task.add_done_callback(_done)
        # A cancelled waiter must not cancel the fetch other waiters share
        return await asyncio.shield(task)

    async def _fetch(self, key: PriceKey) -> float | None:
        asset_id, bucket = key
        as_of = bucket * self._bucket_sec if bucket is not None else None
        try:
            price = await retry_async(
                lambda: self._source.get_unit_price(asset_id, as_of),
                self._retry_policy,
                operation="get_unit_price",
                asset_id=asset_id,
            )
        except Exception as e:
            # Any source failure means "unpriced"; get_price applies the strict policy
            logger.warning(
                "price_source_failed", asset_id=asset_id, error_type=type(e).__name__, error=str(e)
            )
            return None
        if price is None or price < 0:
            return None
        self._entries[key] = PriceEntry(asset_id=asset_id, price=float(price), fetched_at=self._clock())
        return float(price)

    def stats(self) -> dict[str, float]:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total * 100, 1) if total else 0.0,
        }
