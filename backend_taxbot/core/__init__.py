"""
Core utilities: typed errors and the retry/backoff policy shared by every
network call site.
"""

from backend_taxbot.core.exceptions import (
    InvalidInput,
    PartialDataLoss,
    PriceUnresolved,
    RpcError,
    TaxbotError,
    UpstreamUnavailable,
)
from backend_taxbot.core.retry import RetryPolicy, is_transient, retry_async

__all__ = [
    "InvalidInput",
    "PartialDataLoss",
    "PriceUnresolved",
    "RetryPolicy",
    "RpcError",
    "TaxbotError",
    "UpstreamUnavailable",
    "is_transient",
    "retry_async",
]
