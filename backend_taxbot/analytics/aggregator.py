"""
Tax aggregation: fold ClassifiedEvents into a TaxSummary.

Policy:
- total_income: USD value of inflows of TRANSFER and NATIVE_TRANSFER events.
  Swap inflows are not income; a swap only contributes its profit.
- capital_gains: sum of SWAP profits, signed (losses net against gains).
- total_fees: fees paid by the wallet, in SOL (never USD).
- tax_liability: total_income * 0.37 + capital_gains * 0.20, plus an optional
  region rate applied to (total_income + capital_gains).
This is an estimate with flat illustrative rates, not tax advice.

Sums use math.fsum and integer lamports so the result does not depend on the
order of events.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from backend_taxbot.analytics.classifier import ClassifiedEvent, EventType
from backend_taxbot.solana_client.models import lamports_to_sol
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

INCOME_TAX_RATE = 0.37
CAPITAL_GAINS_RATE = 0.20

INCOME_EVENT_TYPES = frozenset({EventType.TRANSFER, EventType.NATIVE_TRANSFER})


@dataclass(frozen=True)
class TaxSummary:
    total_income: float = 0.0
    capital_gains: float = 0.0
    total_fees: float = 0.0
    """SOL."""
    tax_liability: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_income": self.total_income,
            "capital_gains": self.capital_gains,
            "total_fees": self.total_fees,
            "tax_liability": self.tax_liability,
        }


def estimate_liability(
    total_income: float,
    capital_gains: float,
    region_rate: float | None = None,
) -> float:
    liability = total_income * INCOME_TAX_RATE + capital_gains * CAPITAL_GAINS_RATE
    if region_rate:
        liability += (total_income + capital_gains) * region_rate
    return liability


def aggregate(
    events: Iterable[ClassifiedEvent],
    *,
    region_rate: float | None = None,
) -> TaxSummary:
    """Reduce events to a TaxSummary. Pure; any permutation gives the same result."""
    if region_rate is not None and not (0.0 <= region_rate < 1.0):
        raise ValueError("region_rate must be in [0, 1)")

    income_parts: list[float] = []
    gain_parts: list[float] = []
    fee_lamports = 0
    count = 0
    for event in events:
        count += 1
        fee_lamports += event.fee
        if event.type in INCOME_EVENT_TYPES:
            income_parts.extend(m.fiat_value for m in event.inflows)
        elif event.type is EventType.SWAP and event.profit is not None:
            gain_parts.append(event.profit)

    total_income = math.fsum(income_parts)
    capital_gains = math.fsum(gain_parts)
    summary = TaxSummary(
        total_income=total_income,
        capital_gains=capital_gains,
        total_fees=lamports_to_sol(fee_lamports),
        tax_liability=estimate_liability(total_income, capital_gains, region_rate),
    )
    logger.debug("aggregator_summary", event_count=count, **summary.to_dict())
    return summary
