"""
Pytest tests for SolanaRpcClient and TransactionFetcher against a fake node
(httpx.MockTransport). No network.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import BLOCK_TIME, FakeSolanaNode, raw_transaction, signature_item

WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
OTHER = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"


def _rpc(node, attempts=3):
    from backend_taxbot.core.retry import RetryPolicy
    from backend_taxbot.solana_client.rpc import SolanaRpcClient

    return SolanaRpcClient(
        "https://rpc.test",
        http_client=node.client(),
        retry_policy=RetryPolicy(max_attempts=attempts, base_delay_sec=0.0),
    )


def _node_with(n, block_time=BLOCK_TIME):
    node = FakeSolanaNode()
    for i in range(n):
        node.add_transaction(
            raw_transaction(f"sig{i}", [WALLET, OTHER], [1_000_000, 0], [995_000 - i, i], block_time=block_time + i)
        )
    return node


def test_rpc_balance_and_request_shape():
    node = FakeSolanaNode(balance=2_500_000_000)
    rpc = _rpc(node)
    assert asyncio.run(rpc.get_balance(WALLET)) == 2_500_000_000
    assert node.calls == ["getBalance"]
    assert node.params[0][0] == WALLET


def test_rpc_error_object_raises():
    import httpx

    from backend_taxbot.core.exceptions import RpcError
    from backend_taxbot.solana_client.rpc import SolanaRpcClient

    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}})

    rpc = SolanaRpcClient("https://rpc.test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(RpcError) as exc_info:
        asyncio.run(rpc.get_balance(WALLET))
    assert exc_info.value.code == -32602


def test_rpc_unavailable_after_retries():
    from backend_taxbot.core.exceptions import UpstreamUnavailable

    node = FakeSolanaNode(failing={"getSignaturesForAddress"})
    rpc = _rpc(node, attempts=3)
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(rpc.get_signatures_for_address(WALLET))
    assert node.count("getSignaturesForAddress") == 3


def test_display_url_masks_api_key():
    from backend_taxbot.solana_client.rpc import SolanaRpcClient

    rpc = SolanaRpcClient("https://mainnet.helius-rpc.com/?api-key=secret123")
    assert "secret123" not in rpc.display_url
    assert rpc.display_url.endswith("api-key=***")


def test_fetch_recent_transactions_in_order():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = _node_with(3)
    fetcher = TransactionFetcher(_rpc(node), delay_sec=0.0)
    records = asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20))
    assert [r.signature for r in records] == ["sig0", "sig1", "sig2"]
    assert node.count("getSignaturesForAddress") == 1
    assert node.count("getTransaction") == 3


def test_limit_passed_to_signature_listing():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = _node_with(5)
    fetcher = TransactionFetcher(_rpc(node), delay_sec=0.0)
    records = asyncio.run(fetcher.fetch_recent_transactions(WALLET, 2))
    assert len(records) == 2
    assert node.params[0][1]["limit"] == 2


def test_sequential_mode_sleeps_between_calls():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    node = _node_with(3)
    fetcher = TransactionFetcher(_rpc(node), delay_sec=0.1, sleep=fake_sleep)
    asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20))
    assert sleeps == [0.1, 0.1]


def test_bounded_mode_preserves_reference_order():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = _node_with(6)
    fetcher = TransactionFetcher(_rpc(node), concurrency=3)
    records = asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20))
    assert [r.signature for r in records] == [f"sig{i}" for i in range(6)]


def test_lost_record_is_skipped():
    """A malformed or missing transaction is dropped; the rest still come back."""
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = _node_with(2)
    node.transactions["sig0"] = {"meta": {}, "transaction": {"message": {}}}
    node.signatures.append(signature_item("sig-missing"))
    fetcher = TransactionFetcher(_rpc(node), delay_sec=0.0)
    records = asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20))
    assert [r.signature for r in records] == ["sig1"]


def test_record_failing_upstream_is_partial_loss():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = _node_with(2)
    node.failing.add("getTransaction")
    fetcher = TransactionFetcher(_rpc(node, attempts=2), delay_sec=0.0)
    records = asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20))
    assert records == []
    assert node.count("getTransaction") == 4


def test_year_filter():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = _node_with(2)
    # 2021-06-01 UTC
    node.add_transaction(raw_transaction("old", [WALLET], [10], [5], block_time=1_622_505_600))
    fetcher = TransactionFetcher(_rpc(node), delay_sec=0.0)
    records = asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20, year=2021))
    assert [r.signature for r in records] == ["old"]
    assert asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20, year=2019)) == []


def test_block_time_filled_from_reference():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = FakeSolanaNode()
    node.transactions["s"] = raw_transaction("s", [WALLET], [10], [5], block_time=None)
    node.signatures.append(signature_item("s", 1_650_000_000))
    fetcher = TransactionFetcher(_rpc(node), delay_sec=0.0)
    records = asyncio.run(fetcher.fetch_recent_transactions(WALLET, 20))
    assert records[0].block_time == 1_650_000_000


def test_fetcher_rejects_zero_concurrency():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    with pytest.raises(ValueError):
        TransactionFetcher(_rpc(FakeSolanaNode()), concurrency=0)


def test_before_cursor_passed_to_listing():
    from backend_taxbot.solana_client.fetcher import TransactionFetcher

    node = _node_with(1)
    fetcher = TransactionFetcher(_rpc(node), delay_sec=0.0)
    asyncio.run(fetcher.fetch_recent_transactions(WALLET, 10, before="sigPrev"))
    assert node.params[0][1]["before"] == "sigPrev"
    asyncio.run(fetcher.fetch_recent_transactions(WALLET, 10))
    assert "before" not in node.params[2][1]
