"""
FastAPI server: read-only wallet tax API.

The lifespan builds the process-wide collaborators once (RPC client, price
cache, metadata resolver, fetcher, pipeline), probes the RPC connection, and
closes every HTTP client on shutdown. Config via env (see config.settings).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend_taxbot.analytics.pipeline import WalletTaxPipeline
from backend_taxbot.api_server.middleware import RequestLoggingMiddleware
from backend_taxbot.api_server.routes import router
from backend_taxbot.config.settings import Settings, get_settings
from backend_taxbot.core.exceptions import RpcError, TaxbotError
from backend_taxbot.core.retry import RetryPolicy
from backend_taxbot.pricing.metadata import MetadataResolver
from backend_taxbot.pricing.price_cache import PriceCache
from backend_taxbot.pricing.sources import JupiterPriceSource, TokenListSource
from backend_taxbot.solana_client.fetcher import TransactionFetcher
from backend_taxbot.solana_client.rpc import SolanaRpcClient
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)


def build_services(settings: Settings) -> dict[str, Any]:
    """Construct the app-scoped collaborators from settings."""
    retry_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay_sec=settings.retry_base_delay_sec,
        multiplier=settings.retry_multiplier,
    )
    rpc = SolanaRpcClient(
        settings.solana_rpc_url,
        retry_policy=retry_policy,
        request_timeout_sec=settings.request_timeout_sec,
    )
    http = httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout_sec))
    prices = PriceCache(
        JupiterPriceSource(settings.price_api_url, http_client=http),
        ttl_sec=settings.price_ttl_sec,
        default_price=settings.price_default,
        strict=settings.strict_pricing,
        historical=settings.historical_pricing,
        bucket_sec=settings.price_bucket_sec,
        retry_policy=retry_policy,
    )
    metadata = MetadataResolver(
        TokenListSource(settings.token_list_url, http_client=http),
        onchain_lookup=rpc.get_asset if settings.metadata_onchain_lookup else None,
    )
    fetcher = TransactionFetcher(
        rpc,
        concurrency=settings.fetch_concurrency,
        delay_sec=settings.fetch_delay_sec,
    )
    pipeline = WalletTaxPipeline(rpc, fetcher, prices, metadata, tx_limit=settings.tx_limit)
    return {
        "rpc": rpc,
        "http": http,
        "prices": prices,
        "metadata": metadata,
        "pipeline": pipeline,
    }


async def probe_rpc(rpc: SolanaRpcClient) -> bool:
    """getSlot under the retry policy; False (logged) when the node is unreachable."""
    try:
        slot = await rpc.get_slot()
    except (TaxbotError, RpcError, httpx.HTTPError) as e:
        logger.error("rpc_probe_failed", rpc_url=rpc.display_url, error=str(e))
        return False
    logger.info("rpc_probe_ok", rpc_url=rpc.display_url, slot=slot)
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    services = build_services(settings)
    for name, service in services.items():
        setattr(app.state, name, service)
    app.state.rpc_connected = await probe_rpc(services["rpc"])
    logger.info(
        "api_started",
        environment=settings.environment,
        rpc_url=services["rpc"].display_url,
        connected=app.state.rpc_connected,
    )

    yield

    await services["rpc"].aclose()
    await services["http"].aclose()
    logger.info("api_stopped", price_cache=services["prices"].stats())


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="TaxBot API",
        description="Solana wallet transaction classification and tax estimate.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST"],
        allow_credentials=True,
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router, tags=["Wallet"])
    app.include_router(router, prefix="/api", tags=["Wallet"])

    @app.exception_handler(TaxbotError)
    async def taxbot_error_handler(request: Request, exc: TaxbotError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": str(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("api_unhandled_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})

    return app


app = create_app()
