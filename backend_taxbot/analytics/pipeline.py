"""
Wallet tax pipeline: validate -> balance & holdings -> transactions ->
classify -> aggregate.

One run() per wallet query. The query either completes with a WalletReport
or raises a single TaxbotError (InvalidInput, UpstreamUnavailable, or
PriceUnresolved in strict pricing mode); nothing partial is returned.
Records lost along the way are logged and excluded.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from solders.pubkey import Pubkey

from backend_taxbot.analytics.aggregator import TaxSummary, aggregate
from backend_taxbot.analytics.classifier import ClassifiedEvent, classify
from backend_taxbot.core.exceptions import InvalidInput, PartialDataLoss, TaxbotError
from backend_taxbot.pricing.metadata import MetadataResolver
from backend_taxbot.pricing.price_cache import PriceCache
from backend_taxbot.solana_client.fetcher import TransactionFetcher
from backend_taxbot.solana_client.models import NATIVE_SOL_MINT, TransactionRecord, lamports_to_sol
from backend_taxbot.solana_client.rpc import SolanaRpcClient
from backend_taxbot.taxbot_logging import bind_wallet, get_logger

logger = get_logger(__name__)

DEFAULT_TX_LIMIT = 20
SORT_ASC = "asc"
SORT_DESC = "desc"


class QueryState(str, Enum):
    VALIDATING = "VALIDATING"
    FETCHING_BALANCE = "FETCHING_BALANCE"
    FETCHING_TRANSACTIONS = "FETCHING_TRANSACTIONS"
    CLASSIFYING = "CLASSIFYING"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"
    ERROR = "ERROR"


@dataclass
class QueryContext:
    """Per-query state machine; ERROR is absorbing."""

    wallet: str
    state: QueryState = QueryState.VALIDATING
    history: list[QueryState] = field(default_factory=lambda: [QueryState.VALIDATING])
    error: TaxbotError | None = None

    def advance(self, state: QueryState) -> None:
        if self.state in (QueryState.ERROR, QueryState.DONE):
            raise RuntimeError(f"query already finished in state {self.state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, error: TaxbotError) -> None:
        self.error = error
        self.state = QueryState.ERROR
        self.history.append(QueryState.ERROR)


@dataclass(frozen=True)
class AssetHolding:
    asset_id: str
    raw_amount: int
    decimals: int
    ui_amount: float
    fiat_value: float
    symbol: str
    name: str


@dataclass(frozen=True)
class WalletReport:
    wallet_address: str
    balance: float
    """SOL."""
    balance_usd: float
    token_accounts: tuple[AssetHolding, ...]
    token_balance_usd: float
    transactions: tuple[ClassifiedEvent, ...]
    tax_summary: TaxSummary

    @property
    def total_value(self) -> float:
        return self.balance_usd + self.token_balance_usd


def validate_address(address: str) -> Pubkey:
    """Decode a base58 wallet address and require it to be on the ed25519 curve."""
    address = (address or "").strip()
    if not address:
        raise InvalidInput("Please enter a wallet address")
    try:
        pubkey = Pubkey.from_string(address)
    except (ValueError, TypeError) as e:
        raise InvalidInput("Invalid wallet address format", details=str(e)) from e
    if not pubkey.is_on_curve():
        raise InvalidInput("Invalid wallet address format", details="address is not on curve")
    return pubkey


class WalletTaxPipeline:
    """Orchestrates one wallet query over injected, process-wide collaborators."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        fetcher: TransactionFetcher,
        prices: PriceCache,
        metadata: MetadataResolver,
        *,
        tx_limit: int = DEFAULT_TX_LIMIT,
    ) -> None:
        self._rpc = rpc
        self._fetcher = fetcher
        self._prices = prices
        self._metadata = metadata
        self._tx_limit = tx_limit

    async def run(
        self,
        address: str,
        *,
        limit: int | None = None,
        before: str | None = None,
        year: int | None = None,
        region_rate: float | None = None,
        sort: str | None = None,
        context: QueryContext | None = None,
    ) -> WalletReport:
        ctx = context or QueryContext(wallet=(address or "").strip())
        log = bind_wallet(ctx.wallet)
        log.info("wallet_query_start", limit=limit or self._tx_limit, before=before, year=year)
        try:
            report = await self._run(ctx, limit or self._tx_limit, before, year, region_rate, sort)
        except TaxbotError as e:
            ctx.fail(e)
            log.warning("wallet_query_failed", error_code=e.code, error=e.message, details=e.details)
            raise
        except Exception as e:
            ctx.fail(TaxbotError(str(e), details=type(e).__name__))
            log.error("wallet_query_failed", error_code=ctx.error.code, error=str(e), details=type(e).__name__)
            raise
        ctx.advance(QueryState.DONE)
        log.info(
            "wallet_query_done",
            balance=report.balance,
            token_accounts=len(report.token_accounts),
            tx_count=len(report.transactions),
            **report.tax_summary.to_dict(),
        )
        return report

    async def _run(
        self,
        ctx: QueryContext,
        limit: int,
        before: str | None,
        year: int | None,
        region_rate: float | None,
        sort: str | None,
    ) -> WalletReport:
        wallet = str(validate_address(ctx.wallet))

        ctx.advance(QueryState.FETCHING_BALANCE)
        lamports = await self._rpc.get_balance(wallet)
        holdings = await self._holdings(wallet)
        balance = lamports_to_sol(lamports)
        sol_price = await self._prices.get_price(NATIVE_SOL_MINT)

        ctx.advance(QueryState.FETCHING_TRANSACTIONS)
        records = await self._fetcher.fetch_recent_transactions(wallet, limit, before=before, year=year)

        ctx.advance(QueryState.CLASSIFYING)
        events = await self._classify_all(records, wallet)
        if sort in (SORT_ASC, SORT_DESC):
            events.sort(key=lambda e: e.timestamp, reverse=sort == SORT_DESC)

        ctx.advance(QueryState.AGGREGATING)
        summary = aggregate(events, region_rate=region_rate)

        return WalletReport(
            wallet_address=wallet,
            balance=balance,
            balance_usd=balance * sol_price,
            token_accounts=tuple(holdings),
            token_balance_usd=math.fsum(h.fiat_value for h in holdings),
            transactions=tuple(events),
            tax_summary=summary,
        )

    async def _holdings(self, wallet: str) -> list[AssetHolding]:
        """Non-zero SPL token balances, with metadata and current USD value."""
        accounts = await self._rpc.get_token_accounts_by_owner(wallet)
        holdings: list[AssetHolding] = []
        for acct in accounts:
            if acct.amount <= 0:
                continue
            meta = await self._metadata.resolve(acct.mint)
            price = await self._prices.get_price(acct.mint)
            holdings.append(
                AssetHolding(
                    asset_id=acct.mint,
                    raw_amount=acct.amount,
                    decimals=acct.decimals,
                    ui_amount=acct.ui_amount,
                    fiat_value=acct.ui_amount * price,
                    symbol=meta.symbol,
                    name=meta.name,
                )
            )
        return holdings

    async def _classify_all(self, records: list[TransactionRecord], wallet: str) -> list[ClassifiedEvent]:
        events: list[ClassifiedEvent] = []
        for record in records:
            try:
                events.append(await classify(record, wallet, self._prices, self._metadata))
            except (ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
                loss = PartialDataLoss(record.signature, str(e))
                logger.warning(
                    "classifier_partial_data_loss",
                    wallet_id=wallet,
                    signature=record.signature[:16],
                    error=loss.details,
                )
        return events
