"""
Data models for Solana RPC output.

Typed, immutable views over getSignaturesForAddress, getTransaction and
getTokenAccountsByOwner results. Optional RPC fields stay optional here
(None) so the classifier can match on presence instead of probing dicts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

LAMPORTS_PER_SOL = 1_000_000_000
# Wrapped SOL mint; used as the asset id of native SOL for pricing and metadata
NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


def lamports_to_sol(lamports: int) -> float:
    return round(lamports / LAMPORTS_PER_SOL, 9)


@dataclass(frozen=True)
class SignatureInfo:
    """
    Normalized transaction reference from getSignaturesForAddress.

    Mirrors Solana RPC response fields; the fetcher turns each one into a
    full TransactionRecord with getTransaction.
    """

    signature: str
    slot: int
    err: Any  # None if success; dict/object from RPC if failed
    block_time: int | None  # Unix timestamp; None if not available
    memo: str | None = None
    confirmation_status: str | None = None  # processed | confirmed | finalized

    @classmethod
    def from_rpc_item(cls, item: dict[str, Any]) -> "SignatureInfo":
        """Build from a single getSignaturesForAddress result item."""
        return cls(
            signature=item["signature"],
            slot=int(item.get("slot") or 0),
            err=item.get("err"),
            block_time=item.get("blockTime"),
            memo=item.get("memo"),
            confirmation_status=item.get("confirmationStatus"),
        )


@dataclass(frozen=True)
class TokenBalance:
    """One entry of meta.preTokenBalances / meta.postTokenBalances."""

    account_index: int
    mint: str
    owner: str | None
    amount: int
    """Raw integer amount in base units."""
    decimals: int

    @property
    def ui_amount(self) -> float:
        return self.amount / (10 ** self.decimals)


@dataclass(frozen=True)
class TransactionRecord:
    """
    Full transaction as fetched by getTransaction, reduced to balance data.

    Native balances are indexed by account position (same order as
    account_keys). Position 0 is the fee payer.
    """

    signature: str
    slot: int | None
    block_time: int | None
    fee: int
    """Fee paid in lamports."""
    account_keys: tuple[str, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    pre_token_balances: tuple[TokenBalance, ...] = ()
    post_token_balances: tuple[TokenBalance, ...] = ()
    err: Any = None

    @property
    def fee_payer(self) -> str | None:
        return self.account_keys[0] if self.account_keys else None

    @property
    def failed(self) -> bool:
        return self.err is not None

    def position_of(self, address: str) -> int | None:
        """Index of address in account_keys, or None when not involved."""
        try:
            return self.account_keys.index(address)
        except ValueError:
            return None


@dataclass(frozen=True)
class TokenAccount:
    """One SPL token account owned by the queried wallet (jsonParsed encoding)."""

    pubkey: str
    mint: str
    owner: str | None
    amount: int
    decimals: int

    @property
    def ui_amount(self) -> float:
        return self.amount / (10 ** self.decimals)
