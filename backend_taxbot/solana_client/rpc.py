"""
Async Solana JSON-RPC client.

Thin wrapper over httpx.AsyncClient: builds JSON-RPC bodies, raises on HTTP or
RPC errors, and runs every call through the shared retry policy. Returns typed
models from backend_taxbot.solana_client.models.
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx

from backend_taxbot.config.env import mask_rpc_url
from backend_taxbot.core.exceptions import RpcError
from backend_taxbot.core.retry import RetryPolicy, retry_async
from backend_taxbot.solana_client.models import (
    TOKEN_PROGRAM_ID,
    SignatureInfo,
    TokenAccount,
)
from backend_taxbot.solana_client.parser import parse_signatures, parse_token_accounts
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)

DEFAULT_COMMITMENT = "confirmed"


class SolanaRpcClient:
    """
    JSON-RPC client for the handful of read calls a wallet query needs.

    The httpx client may be injected (tests use httpx.MockTransport); when it
    is not, one is created with the given timeout and closed by aclose().
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        request_timeout_sec: float = 30.0,
        commitment: str = DEFAULT_COMMITMENT,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout_sec)
        )
        self._retry_policy = retry_policy or RetryPolicy()
        self._commitment = commitment
        self._ids = itertools.count(1)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    @property
    def display_url(self) -> str:
        return mask_rpc_url(self._rpc_url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _build_body(self, method: str, params: Any) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

    async def _post(self, method: str, params: Any) -> Any:
        """Single JSON-RPC round trip; raise on transport, HTTP status or RPC error."""
        resp = await self._client.post(self._rpc_url, json=self._build_body(method, params))
        resp.raise_for_status()
        data = resp.json()
        if "error" in data and data["error"] is not None:
            err = data["error"]
            if isinstance(err, dict):
                raise RpcError(method, err.get("code"), str(err.get("message", err)))
            raise RpcError(method, None, str(err))
        return data.get("result")

    async def call(self, method: str, params: Any, **log_context: Any) -> Any:
        """JSON-RPC call under the retry policy; returns the raw `result`."""
        return await retry_async(
            lambda: self._post(method, params),
            self._retry_policy,
            operation=method,
            **log_context,
        )

    async def get_slot(self) -> int:
        result = await self.call("getSlot", [{"commitment": self._commitment}])
        return int(result)

    async def get_balance(self, address: str) -> int:
        """SOL balance in lamports."""
        result = await self.call(
            "getBalance", [address, {"commitment": self._commitment}], wallet_id=address
        )
        value = result.get("value") if isinstance(result, dict) else result
        return int(value or 0)

    async def get_token_accounts_by_owner(
        self,
        address: str,
        program_id: str = TOKEN_PROGRAM_ID,
    ) -> list[TokenAccount]:
        result = await self.call(
            "getTokenAccountsByOwner",
            [
                address,
                {"programId": program_id},
                {"encoding": "jsonParsed", "commitment": self._commitment},
            ],
            wallet_id=address,
        )
        value = result.get("value") if isinstance(result, dict) else result
        return parse_token_accounts(value)

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int = 20,
        before: str | None = None,
    ) -> list[SignatureInfo]:
        """Transaction references, newest first (RPC order)."""
        opts: dict[str, Any] = {"limit": limit, "commitment": self._commitment}
        if before is not None:
            opts["before"] = before
        result = await self.call("getSignaturesForAddress", [address, opts], wallet_id=address)
        if result is None:
            raise RpcError("getSignaturesForAddress", None, "RPC returned no result")
        return parse_signatures(result)

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        """Raw getTransaction result, or None when the node does not have it."""
        result = await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self._commitment,
                },
            ],
            signature=signature[:16],
        )
        return result if isinstance(result, dict) else None

    async def get_asset(self, asset_id: str) -> dict[str, Any] | None:
        """DAS getAsset (Helius and other DAS-enabled RPCs); None if unknown."""
        result = await self.call("getAsset", {"id": asset_id}, asset_id=asset_id)
        return result if isinstance(result, dict) else None
