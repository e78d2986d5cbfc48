"""
Solana RPC access package.

JSON-RPC client, payload parsing into typed records, and the transaction
fetcher used by the wallet tax pipeline.
"""

from backend_taxbot.solana_client.fetcher import TransactionFetcher
from backend_taxbot.solana_client.models import (
    LAMPORTS_PER_SOL,
    NATIVE_SOL_MINT,
    SignatureInfo,
    TokenAccount,
    TokenBalance,
    TransactionRecord,
)
from backend_taxbot.solana_client.rpc import SolanaRpcClient

__all__ = [
    "LAMPORTS_PER_SOL",
    "NATIVE_SOL_MINT",
    "SignatureInfo",
    "SolanaRpcClient",
    "TokenAccount",
    "TokenBalance",
    "TransactionFetcher",
    "TransactionRecord",
]
