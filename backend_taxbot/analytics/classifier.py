"""
Transaction classifier: one TransactionRecord -> one ClassifiedEvent.

Classification looks only at balance deltas of the queried wallet, never at
program semantics. Order of checks matters:
  SWAP            token deltas in both directions
  TRANSFER        token deltas in one direction only
  NATIVE_TRANSFER no token delta, SOL balance changed (fee excluded)
  UNKNOWN         nothing moved; the event is still emitted so the fee counts
The fee is attributed only when the wallet is the fee payer (position 0).
Movements are priced through the PriceCache with the block time as hint.
"""

from __future__ import annotations

import math
import time
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum

from backend_taxbot.pricing.metadata import MetadataResolver
from backend_taxbot.pricing.price_cache import PriceCache
from backend_taxbot.solana_client.models import (
    NATIVE_SOL_MINT,
    TokenBalance,
    TransactionRecord,
    lamports_to_sol,
)
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

STATUS_CONFIRMED = "confirmed"
STATUS_FAILED = "failed"


class EventType(str, Enum):
    TRANSFER = "TRANSFER"
    SWAP = "SWAP"
    NATIVE_TRANSFER = "NATIVE_TRANSFER"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class AssetMovement:
    """Amount of one asset entering or leaving the wallet, in UI units."""

    asset_id: str
    amount: float
    fiat_value: float = 0.0
    symbol: str | None = None


@dataclass(frozen=True)
class BalanceEffect:
    """Unpriced classification result."""

    type: EventType
    inflows: tuple[AssetMovement, ...]
    outflows: tuple[AssetMovement, ...]
    fee: int


@dataclass(frozen=True)
class ClassifiedEvent:
    signature: str
    timestamp: int
    type: EventType
    inflows: tuple[AssetMovement, ...]
    outflows: tuple[AssetMovement, ...]
    fee: int
    """Fee in lamports paid by this wallet (0 when another account paid)."""
    profit: float | None = None
    """USD; SWAP only, signed (negative = loss)."""
    status: str = STATUS_CONFIRMED

    @property
    def fee_sol(self) -> float:
        return lamports_to_sol(self.fee)

    @property
    def inflow_value(self) -> float:
        return math.fsum(m.fiat_value for m in self.inflows)

    @property
    def outflow_value(self) -> float:
        return math.fsum(m.fiat_value for m in self.outflows)


def _owned_positions(record: TransactionRecord, account: str) -> set[int]:
    """Token account positions owned by the wallet, from either side of the tx."""
    positions: set[int] = set()
    for b in (*record.pre_token_balances, *record.post_token_balances):
        if b.owner == account:
            positions.add(b.account_index)
        elif b.owner is None and record.position_of(account) == b.account_index:
            positions.add(b.account_index)
    return positions


def token_deltas(record: TransactionRecord, account: str) -> dict[str, float]:
    """
    Net UI-amount change per mint across the wallet's token accounts.

    Pre and post entries are paired on accountIndex; an entry present on one
    side only is a change from or to zero. Mints that net to zero are dropped.
    """
    positions = _owned_positions(record, account)
    pre_by_pos = {b.account_index: b for b in record.pre_token_balances if b.account_index in positions}
    post_by_pos = {b.account_index: b for b in record.post_token_balances if b.account_index in positions}

    raw: defaultdict[str, int] = defaultdict(int)
    decimals: dict[str, int] = {}

    def _add(b: TokenBalance, sign: int) -> None:
        raw[b.mint] += sign * b.amount
        decimals.setdefault(b.mint, b.decimals)

    for pos in sorted(positions):
        match (pre_by_pos.get(pos), post_by_pos.get(pos)):
            case (None, None):
                continue
            case (TokenBalance() as pre, None):
                _add(pre, -1)
            case (None, TokenBalance() as post):
                _add(post, +1)
            case (TokenBalance() as pre, TokenBalance() as post):
                # Mints may differ when an account is closed and re-opened in one tx
                _add(pre, -1)
                _add(post, +1)

    return {
        mint: delta / (10 ** decimals[mint])
        for mint, delta in raw.items()
        if delta != 0
    }


def native_delta(record: TransactionRecord, account: str) -> int:
    """SOL change in lamports for the wallet's own position, fee excluded."""
    pos = record.position_of(account)
    if pos is None or pos >= len(record.pre_balances) or pos >= len(record.post_balances):
        return 0
    delta = record.post_balances[pos] - record.pre_balances[pos]
    if pos == 0:
        delta += record.fee
    return delta


def fee_for(record: TransactionRecord, account: str) -> int:
    return record.fee if record.fee_payer == account else 0


def detect_effect(record: TransactionRecord, account: str) -> BalanceEffect:
    """Classify without pricing. Pure function of the record."""
    fee = fee_for(record, account)
    deltas = token_deltas(record, account)
    inflows = tuple(AssetMovement(mint, d) for mint, d in deltas.items() if d > 0)
    outflows = tuple(AssetMovement(mint, -d) for mint, d in deltas.items() if d < 0)

    if inflows and outflows:
        return BalanceEffect(EventType.SWAP, inflows, outflows, fee)
    if inflows or outflows:
        return BalanceEffect(EventType.TRANSFER, inflows, outflows, fee)

    lamports = native_delta(record, account)
    if lamports > 0:
        return BalanceEffect(
            EventType.NATIVE_TRANSFER, (AssetMovement(NATIVE_SOL_MINT, lamports_to_sol(lamports)),), (), fee
        )
    if lamports < 0:
        return BalanceEffect(
            EventType.NATIVE_TRANSFER, (), (AssetMovement(NATIVE_SOL_MINT, lamports_to_sol(-lamports)),), fee
        )
    return BalanceEffect(EventType.UNKNOWN, (), (), fee)


async def _price_movements(
    movements: tuple[AssetMovement, ...],
    timestamp: int,
    prices: PriceCache,
    metadata: MetadataResolver | None,
) -> tuple[AssetMovement, ...]:
    priced: list[AssetMovement] = []
    for m in movements:
        unit = await prices.get_price(m.asset_id, as_of=timestamp)
        symbol = (await metadata.resolve(m.asset_id)).symbol if metadata is not None else None
        priced.append(AssetMovement(m.asset_id, m.amount, m.amount * unit, symbol))
    return tuple(priced)


async def classify(
    record: TransactionRecord,
    account: str,
    prices: PriceCache,
    metadata: MetadataResolver | None = None,
) -> ClassifiedEvent:
    """Classify one record for the wallet and value its movements in USD."""
    effect = detect_effect(record, account)
    timestamp = record.block_time if record.block_time is not None else int(time.time())

    inflows = await _price_movements(effect.inflows, timestamp, prices, metadata)
    outflows = await _price_movements(effect.outflows, timestamp, prices, metadata)

    profit = None
    if effect.type is EventType.SWAP:
        profit = math.fsum(m.fiat_value for m in inflows) - math.fsum(m.fiat_value for m in outflows)

    event = ClassifiedEvent(
        signature=record.signature,
        timestamp=timestamp,
        type=effect.type,
        inflows=inflows,
        outflows=outflows,
        fee=effect.fee,
        profit=profit,
        status=STATUS_FAILED if record.failed else STATUS_CONFIRMED,
    )
    logger.debug(
        "classifier_event",
        signature=record.signature[:16],
        type=event.type.value,
        inflows=len(inflows),
        outflows=len(outflows),
        fee=event.fee,
    )
    return event
