"""
Application-level exceptions.

Every failure a wallet query can run into maps to one of these. InvalidInput
and UpstreamUnavailable abort the query; PartialDataLoss and PriceUnresolved
are absorbed where they happen and only logged, except in strict pricing mode.
"""

from __future__ import annotations

from typing import Any


class TaxbotError(Exception):
    """Base class; carries a stable code and the HTTP status the API should use."""

    code = "internal_error"
    http_status = 500

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.message}
        if self.details:
            out["details"] = self.details
        return out


class InvalidInput(TaxbotError):
    """Malformed or off-curve wallet address. Never retried."""

    code = "invalid_input"
    http_status = 400


class UpstreamUnavailable(TaxbotError):
    """RPC or price source still failing after the retry budget."""

    code = "upstream_unavailable"
    http_status = 503

    def __init__(
        self,
        message: str,
        *,
        details: str | None = None,
        operation: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, details=details)
        self.operation = operation
        self.attempts = attempts


class PartialDataLoss(TaxbotError):
    """One transaction record could not be fetched or classified."""

    code = "partial_data_loss"

    def __init__(self, signature: str, reason: str) -> None:
        super().__init__(f"Transaction {signature} skipped", details=reason)
        self.signature = signature


class PriceUnresolved(TaxbotError):
    """No price for an asset. Only raised when the price cache runs in strict mode."""

    code = "price_unresolved"

    def __init__(self, asset_id: str, reason: str | None = None) -> None:
        super().__init__(f"No price available for {asset_id}", details=reason)
        self.asset_id = asset_id


class RpcError(Exception):
    """JSON-RPC error object returned by the node (transport succeeded)."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"Solana RPC error in {method}: {message} (code={code})")
        self.method = method
        self.code = code
        self.rpc_message = message
