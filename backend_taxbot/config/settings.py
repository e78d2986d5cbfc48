"""
Application settings.

Loads configuration from environment variables (and the project .env file),
validates it, and exposes one frozen Settings object shared by the RPC client,
caches, pipeline and API server.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from backend_taxbot.config.env import get_solana_network, get_solana_rpc_url, load_taxbot_env

DEFAULT_PRICE_API_URL = "https://lite-api.jup.ag/price/v2"
DEFAULT_TOKEN_LIST_URL = "https://token.jup.ag/strict"
DEFAULT_CORS_ORIGINS = ("https://taxbot.onrender.com", "http://localhost:3000")


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Typed view over the environment. Build with Settings.from_env() or get_settings()."""

    solana_rpc_url: str
    solana_network: str = "mainnet"
    environment: str = "development"
    # Pricing
    price_api_url: str = DEFAULT_PRICE_API_URL
    token_list_url: str = DEFAULT_TOKEN_LIST_URL
    price_ttl_sec: float = 300.0
    price_default: float = 0.0
    strict_pricing: bool = False
    historical_pricing: bool = False
    price_bucket_sec: int = 3600
    metadata_onchain_lookup: bool = True
    # Fetching
    tx_limit: int = 20
    fetch_concurrency: int = 1
    fetch_delay_sec: float = 0.1
    request_timeout_sec: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay_sec: float = 1.0
    retry_multiplier: float = 2.0
    # API
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    cors_origins: tuple[str, ...] = field(default=DEFAULT_CORS_ORIGINS)

    def __post_init__(self) -> None:
        if not self.solana_rpc_url.strip():
            raise ValueError("solana_rpc_url must be non-empty")
        if self.price_ttl_sec <= 0:
            raise ValueError("price_ttl_sec must be positive")
        if self.price_bucket_sec <= 0:
            raise ValueError("price_bucket_sec must be positive")
        if not (1 <= self.tx_limit <= 1000):
            raise ValueError("tx_limit must be between 1 and 1000")
        if self.fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be at least 1")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")

    @classmethod
    def from_env(cls) -> "Settings":
        load_taxbot_env()
        origins_raw = (os.getenv("CORS_ORIGINS") or "").strip()
        origins = (
            tuple(o.strip() for o in origins_raw.split(",") if o.strip())
            if origins_raw
            else DEFAULT_CORS_ORIGINS
        )
        return cls(
            solana_rpc_url=get_solana_rpc_url(),
            solana_network=get_solana_network(),
            environment=_env_str("APP_ENV", _env_str("NODE_ENV", "development")),
            price_api_url=_env_str("PRICE_API_URL", DEFAULT_PRICE_API_URL),
            token_list_url=_env_str("TOKEN_LIST_URL", DEFAULT_TOKEN_LIST_URL),
            price_ttl_sec=_env_float("PRICE_TTL_SEC", 300.0),
            price_default=_env_float("PRICE_DEFAULT", 0.0),
            strict_pricing=_env_bool("STRICT_PRICING"),
            historical_pricing=_env_bool("HISTORICAL_PRICING"),
            price_bucket_sec=_env_int("PRICE_BUCKET_SEC", 3600),
            metadata_onchain_lookup=_env_bool("METADATA_ONCHAIN_LOOKUP", True),
            tx_limit=_env_int("TX_LIMIT", 20),
            fetch_concurrency=_env_int("FETCH_CONCURRENCY", 1),
            fetch_delay_sec=_env_float("FETCH_DELAY_SEC", 0.1),
            request_timeout_sec=_env_float("RPC_TIMEOUT_SEC", 30.0),
            retry_max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 3),
            retry_base_delay_sec=_env_float("RETRY_BASE_DELAY_SEC", 1.0),
            retry_multiplier=_env_float("RETRY_MULTIPLIER", 2.0),
            api_host=_env_str("API_HOST", "0.0.0.0"),
            api_port=_env_int("PORT", _env_int("API_PORT", 3001)),
            cors_origins=origins,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings (read once from env)."""
    return Settings.from_env()
