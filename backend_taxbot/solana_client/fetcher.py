"""
Transaction fetcher: signature listing plus one getTransaction per reference.

Listing failures propagate (UpstreamUnavailable aborts the query). A single
record that cannot be fetched or parsed is logged as partial data loss and
skipped. Records come back in reference order (newest first).

Default mode is sequential with a fixed delay between getTransaction calls;
with concurrency > 1 records are fetched by a bounded task group.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx

from backend_taxbot.core.exceptions import PartialDataLoss, RpcError, UpstreamUnavailable
from backend_taxbot.solana_client.models import SignatureInfo, TransactionRecord
from backend_taxbot.solana_client.parser import parse_transaction
from backend_taxbot.solana_client.rpc import SolanaRpcClient
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

DEFAULT_FETCH_DELAY_SEC = 0.1

# Failures of one record that must not fail the whole batch
_RECORD_ERRORS = (UpstreamUnavailable, RpcError, httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError)


def _year_bounds(year: int) -> tuple[int, int]:
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return int(start.timestamp()), int(end.timestamp())


class TransactionFetcher:
    """Fetch recent transactions for one wallet against a (possibly flaky) RPC."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        *,
        concurrency: int = 1,
        delay_sec: float = DEFAULT_FETCH_DELAY_SEC,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._rpc = rpc
        self._concurrency = concurrency
        self._delay_sec = max(0.0, delay_sec)
        self._sleep = sleep

    async def list_references(
        self,
        account: str,
        limit: int,
        *,
        before: str | None = None,
        year: int | None = None,
    ) -> list[SignatureInfo]:
        """
        Newest-first signature references for the account.

        With year set, only references whose block time falls in that calendar
        year (UTC) are kept; references without block time are dropped then.
        """
        refs = await self._rpc.get_signatures_for_address(account, limit=limit, before=before)
        if year is None:
            return refs
        start, end = _year_bounds(year)
        kept = [r for r in refs if r.block_time is not None and start <= r.block_time < end]
        logger.info(
            "fetcher_year_filter",
            wallet_id=account,
            year=year,
            total=len(refs),
            kept=len(kept),
        )
        return kept

    async def fetch_record(self, ref: SignatureInfo) -> TransactionRecord | None:
        """Full record for one reference; None when missing or lost."""
        try:
            raw = await self._rpc.get_transaction(ref.signature)
            if raw is None:
                logger.info("fetcher_transaction_not_found", signature=ref.signature[:16])
                return None
            record = parse_transaction(raw, ref.signature)
        except _RECORD_ERRORS as e:
            loss = PartialDataLoss(ref.signature, str(e))
            logger.warning(
                "fetcher_partial_data_loss",
                signature=ref.signature[:16],
                error=loss.details,
            )
            return None
        if record.block_time is None and ref.block_time is not None:
            record = _with_block_time(record, ref.block_time)
        return record

    async def fetch_recent_transactions(
        self,
        account: str,
        limit: int,
        *,
        before: str | None = None,
        year: int | None = None,
    ) -> list[TransactionRecord]:
        """List references then fetch each full record. Re-fetches on every call."""
        refs = await self.list_references(account, limit, before=before, year=year)
        if not refs:
            logger.info("fetcher_no_transactions", wallet_id=account)
            return []
        if self._concurrency == 1:
            records = await self._fetch_sequential(refs)
        else:
            records = await self._fetch_bounded(refs)
        kept = [r for r in records if r is not None]
        logger.info(
            "fetcher_done",
            wallet_id=account,
            references=len(refs),
            records=len(kept),
            dropped=len(refs) - len(kept),
        )
        return kept

    async def _fetch_sequential(self, refs: list[SignatureInfo]) -> list[TransactionRecord | None]:
        out: list[TransactionRecord | None] = []
        for i, ref in enumerate(refs):
            if i and self._delay_sec:
                await self._sleep(self._delay_sec)
            out.append(await self.fetch_record(ref))
        return out

    async def _fetch_bounded(self, refs: list[SignatureInfo]) -> list[TransactionRecord | None]:
        """Task group with a semaphore; cancelling the caller cancels every fetch."""
        semaphore = asyncio.Semaphore(self._concurrency)
        out: list[TransactionRecord | None] = [None] * len(refs)

        async def _one(i: int, ref: SignatureInfo) -> None:
            async with semaphore:
                out[i] = await self.fetch_record(ref)

        async with asyncio.TaskGroup() as tg:
            for i, ref in enumerate(refs):
                tg.create_task(_one(i, ref))
        return out


def _with_block_time(record: TransactionRecord, block_time: int) -> TransactionRecord:
    return replace(record, block_time=block_time)
