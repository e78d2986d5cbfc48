"""
Pytest fixtures for TaxBot tests.

No network: Solana RPC is an in-memory fake node served through
httpx.MockTransport, prices come from a dict-backed fake source. Wallets are
fresh ed25519 keypairs so they always pass the on-curve check.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from solders.keypair import Keypair

BLOCK_TIME = 1_700_000_000  # 2023-11-14 UTC
MINT_X = "MintXxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxxx"
MINT_Y = "MintYyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyyy"


def new_wallet() -> str:
    return str(Keypair().pubkey())


def token_balance_json(index: int, mint: str, owner: str | None, amount: int, decimals: int = 6) -> dict[str, Any]:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {
            "amount": str(amount),
            "decimals": decimals,
            "uiAmount": amount / (10 ** decimals),
        },
    }


def raw_transaction(
    signature: str,
    account_keys: list[str],
    pre: list[int],
    post: list[int],
    *,
    fee: int = 5000,
    pre_tokens: list[dict[str, Any]] | None = None,
    post_tokens: list[dict[str, Any]] | None = None,
    block_time: int | None = BLOCK_TIME,
    err: Any = None,
) -> dict[str, Any]:
    """getTransaction result (json encoding) for a legacy transaction."""
    return {
        "slot": 250_000_000,
        "blockTime": block_time,
        "meta": {
            "err": err,
            "fee": fee,
            "preBalances": pre,
            "postBalances": post,
            "preTokenBalances": pre_tokens or [],
            "postTokenBalances": post_tokens or [],
            "loadedAddresses": {"writable": [], "readonly": []},
        },
        "transaction": {
            "signatures": [signature],
            "message": {"accountKeys": account_keys},
        },
    }


def signature_item(signature: str, block_time: int | None = BLOCK_TIME) -> dict[str, Any]:
    return {
        "signature": signature,
        "slot": 250_000_000,
        "err": None,
        "blockTime": block_time,
        "memo": None,
        "confirmationStatus": "finalized",
    }


class FakeSolanaNode:
    """
    JSON-RPC node in memory. Every request is recorded in `calls`; methods in
    `failing` answer HTTP 503 so the client's retry path kicks in.
    """

    def __init__(
        self,
        *,
        balance: int = 0,
        token_accounts: list[dict[str, Any]] | None = None,
        signatures: list[dict[str, Any]] | None = None,
        transactions: dict[str, dict[str, Any]] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self.balance = balance
        self.token_accounts = token_accounts or []
        self.signatures = signatures or []
        self.transactions = transactions or {}
        self.failing = failing or set()
        self.calls: list[str] = []
        self.params: list[Any] = []

    def add_transaction(self, raw: dict[str, Any]) -> None:
        sig = raw["transaction"]["signatures"][0]
        self.transactions[sig] = raw
        self.signatures.append(signature_item(sig, raw.get("blockTime")))

    def count(self, method: str) -> int:
        return self.calls.count(method)

    def _result(self, method: str, params: Any) -> Any:
        if method == "getSlot":
            return 250_000_123
        if method == "getBalance":
            return {"context": {"slot": 1}, "value": self.balance}
        if method == "getTokenAccountsByOwner":
            return {"context": {"slot": 1}, "value": self.token_accounts}
        if method == "getSignaturesForAddress":
            opts = params[1] if len(params) > 1 else {}
            return self.signatures[: opts.get("limit", len(self.signatures))]
        if method == "getTransaction":
            return self.transactions.get(params[0])
        if method == "getAsset":
            return None
        raise AssertionError(f"unexpected RPC method {method}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        self.calls.append(method)
        self.params.append(body["params"])
        if method in self.failing:
            return httpx.Response(503, json={"error": "service unavailable"})
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "result": self._result(method, body["params"])},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakePriceSource:
    """USD unit prices from a dict; counts source calls per asset."""

    def __init__(self, prices: dict[str, float] | None = None, *, fail: bool = False) -> None:
        self.prices = dict(prices or {})
        self.fail = fail
        self.calls: list[str] = []

    async def get_unit_price(self, asset_id: str, as_of: int | None = None) -> float | None:
        self.calls.append(asset_id)
        if self.fail:
            raise httpx.ConnectError("price source down")
        return self.prices.get(asset_id)


@pytest.fixture
def wallet() -> str:
    return new_wallet()


@pytest.fixture
def other_wallet() -> str:
    return new_wallet()


@pytest.fixture
def make_pipeline():
    """
    Factory: (node, price_source, **opts) -> WalletTaxPipeline wired to the fake
    node with zero retry delays.
    """
    from backend_taxbot.analytics.pipeline import WalletTaxPipeline
    from backend_taxbot.core.retry import RetryPolicy
    from backend_taxbot.pricing.metadata import MetadataResolver
    from backend_taxbot.pricing.price_cache import PriceCache
    from backend_taxbot.solana_client.fetcher import TransactionFetcher
    from backend_taxbot.solana_client.rpc import SolanaRpcClient

    def _make(node: FakeSolanaNode, source: FakePriceSource | None = None, *, strict: bool = False):
        policy = RetryPolicy(max_attempts=3, base_delay_sec=0.0)
        rpc = SolanaRpcClient("https://rpc.test", http_client=node.client(), retry_policy=policy)
        fetcher = TransactionFetcher(rpc, delay_sec=0.0)
        prices = PriceCache(
            source or FakePriceSource(),
            strict=strict,
            retry_policy=RetryPolicy(max_attempts=1, base_delay_sec=0.0),
        )
        return WalletTaxPipeline(rpc, fetcher, prices, MetadataResolver())

    return _make


@pytest.fixture
def client(make_pipeline):
    """
    FastAPI TestClient over a fresh app. The lifespan is not entered; the
    pipeline dependency is overridden with one backed by a fake node, exposed
    as client.node / client.prices.
    """
    from fastapi.testclient import TestClient

    from backend_taxbot.api_server.routes import get_pipeline
    from backend_taxbot.api_server.server import create_app
    from backend_taxbot.config.settings import Settings

    app = create_app(Settings(solana_rpc_url="https://rpc.test", environment="test"))
    node = FakeSolanaNode(balance=2_500_000_000)
    prices = FakePriceSource({"So11111111111111111111111111111111111111112": 100.0})
    pipeline = make_pipeline(node, prices)
    app.dependency_overrides[get_pipeline] = lambda: pipeline

    test_client = TestClient(app)
    test_client.node = node
    test_client.prices = prices
    return test_client
