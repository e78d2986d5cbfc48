"""
API route definitions: wallet tax query and health check.

Validates query params, delegates to the WalletTaxPipeline on app state and
converts every outcome to JSON: 200 report, 400 invalid address, 503
upstream unavailable, 500 anything else.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend_taxbot.analytics.classifier import AssetMovement, ClassifiedEvent
from backend_taxbot.analytics.pipeline import AssetHolding, WalletReport, WalletTaxPipeline
from backend_taxbot.core.exceptions import TaxbotError, UpstreamUnavailable
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


# -----------------------------------------------------------------------------
# Response models (camelCase on the wire)
# -----------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TokenMovementOut(_CamelModel):
    asset_id: str
    symbol: str | None = None
    amount: float
    fiat_value: float

    @classmethod
    def from_movement(cls, m: AssetMovement) -> "TokenMovementOut":
        return cls(asset_id=m.asset_id, symbol=m.symbol, amount=m.amount, fiat_value=m.fiat_value)


class TransactionOut(_CamelModel):
    signature: str
    timestamp: int
    type: str
    in_tokens: list[TokenMovementOut] = Field(default_factory=list)
    out_tokens: list[TokenMovementOut] = Field(default_factory=list)
    fee: int = Field(..., description="Fee paid by this wallet, lamports")
    fee_sol: float
    profit: float | None = Field(None, description="USD, SWAP only")
    status: str

    @classmethod
    def from_event(cls, e: ClassifiedEvent) -> "TransactionOut":
        return cls(
            signature=e.signature,
            timestamp=e.timestamp,
            type=e.type.value,
            in_tokens=[TokenMovementOut.from_movement(m) for m in e.inflows],
            out_tokens=[TokenMovementOut.from_movement(m) for m in e.outflows],
            fee=e.fee,
            fee_sol=e.fee_sol,
            profit=e.profit,
            status=e.status,
        )


class HoldingOut(_CamelModel):
    asset_id: str
    symbol: str
    name: str
    raw_amount: int
    decimals: int
    ui_amount: float
    fiat_value: float

    @classmethod
    def from_holding(cls, h: AssetHolding) -> "HoldingOut":
        return cls(
            asset_id=h.asset_id,
            symbol=h.symbol,
            name=h.name,
            raw_amount=h.raw_amount,
            decimals=h.decimals,
            ui_amount=h.ui_amount,
            fiat_value=h.fiat_value,
        )


class TaxSummaryOut(_CamelModel):
    total_income: float
    capital_gains: float
    total_fees: float = Field(..., description="SOL")
    tax_liability: float


class WalletReportOut(_CamelModel):
    wallet_address: str
    balance: float = Field(..., description="SOL")
    balance_usd: float = Field(..., alias="balanceUSD")
    token_accounts: list[HoldingOut]
    token_balance_usd: float = Field(..., alias="tokenBalanceUSD")
    total_value: float
    transactions: list[TransactionOut]
    tax_summary: TaxSummaryOut

    @classmethod
    def from_report(cls, r: WalletReport) -> "WalletReportOut":
        s = r.tax_summary
        return cls(
            wallet_address=r.wallet_address,
            balance=r.balance,
            balance_usd=r.balance_usd,
            token_accounts=[HoldingOut.from_holding(h) for h in r.token_accounts],
            token_balance_usd=r.token_balance_usd,
            total_value=r.total_value,
            transactions=[TransactionOut.from_event(e) for e in r.transactions],
            tax_summary=TaxSummaryOut(
                total_income=s.total_income,
                capital_gains=s.capital_gains,
                total_fees=s.total_fees,
                tax_liability=s.tax_liability,
            ),
        )


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------


def get_pipeline(request: Request) -> WalletTaxPipeline:
    """Dependency: the app-scoped pipeline built in the lifespan."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise UpstreamUnavailable("Unable to connect to Solana network")
    return pipeline


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@router.get("/health")
def health(request: Request) -> dict[str, Any]:
    """Liveness probe plus whether the RPC connection came up at startup."""
    state = request.app.state
    rpc = getattr(state, "rpc", None)
    settings = getattr(state, "settings", None)
    return {
        "status": "ok",
        "environment": settings.environment if settings else None,
        "rpcEndpoint": rpc.display_url if rpc is not None else "not connected",
        "connected": bool(getattr(state, "rpc_connected", False)),
    }


@router.get("/transactions/{wallet_address}", response_model=WalletReportOut)
async def get_transactions(
    wallet_address: str,
    limit: int | None = Query(None, ge=1, le=1000, description="Max transactions to fetch"),
    before: str | None = Query(None, description="Page back from this signature"),
    year: int | None = Query(None, ge=2020, le=2100, description="Only transactions from this calendar year"),
    region_rate: float | None = Query(None, alias="regionRate", ge=0, lt=1),
    sort: str | None = Query(None, pattern="^(asc|desc)$"),
    pipeline: WalletTaxPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """
    Balance, holdings, classified recent transactions and tax summary for a wallet.
    """
    logger.info("transactions_request", wallet=wallet_address[:16] + "...")
    try:
        report = await pipeline.run(
            wallet_address,
            limit=limit,
            before=before,
            year=year,
            region_rate=region_rate,
            sort=sort,
        )
    except TaxbotError as e:
        return JSONResponse(status_code=e.http_status, content=e.to_dict())
    except Exception as e:
        logger.exception("transactions_unexpected_error", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch wallet data", "details": str(e)},
        )
    return JSONResponse(content=WalletReportOut.from_report(report).model_dump(by_alias=True))
