"""
Solana RPC payload parser: raw JSON results to typed records.

Purely structural: handles legacy and versioned transactions (json and
jsonParsed account keys, loaded addresses) and the jsonParsed token account
shape. No classification or pricing here.
"""

from __future__ import annotations

from typing import Any

from backend_taxbot.solana_client.models import (
    SignatureInfo,
    TokenAccount,
    TokenBalance,
    TransactionRecord,
)
from backend_taxbot.taxbot_logging import get_logger

logger = get_logger(__name__)


def _get_account_keys(
    message: dict[str, Any],
    meta: dict[str, Any] | None = None,
) -> list[str]:
    """
    Resolve accountKeys to a list of base58 strings (handles json vs jsonParsed).
    For versioned transactions, appends meta.loadedAddresses (writable + readonly).
    """
    keys = message.get("accountKeys")
    if not keys:
        return []
    if isinstance(keys[0], str):
        out = list(keys)
    else:
        out = [k.get("pubkey", "") for k in keys if isinstance(k, dict)]
    loaded = (meta or {}).get("loadedAddresses") or {}
    if not isinstance(loaded, dict):
        loaded = {}
    for role in ("writable", "readonly"):
        for addr in loaded.get(role) or []:
            if isinstance(addr, str):
                out.append(addr)
    return out


def _get_message_and_meta(raw: dict[str, Any]) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
    """Return (transaction.message, meta) from getTransaction-style result."""
    tx_obj = raw.get("transaction")
    if not tx_obj or not isinstance(tx_obj, dict):
        return None, None
    message = tx_obj.get("message")
    if not message or not isinstance(message, dict):
        return None, None
    meta = raw.get("meta")
    if not isinstance(meta, dict):
        meta = None
    return message, meta


def _int_list(values: Any) -> tuple[int, ...]:
    if not isinstance(values, list):
        return ()
    return tuple(int(v or 0) for v in values)


def parse_token_balance(item: dict[str, Any]) -> TokenBalance | None:
    """Parse one pre/post token balance entry; None if the shape is unusable."""
    try:
        ui = item.get("uiTokenAmount") or {}
        if not isinstance(ui, dict):
            logger.debug("parser_skip_token_balance", error="uiTokenAmount is not an object")
            return None
        decimals = int(ui.get("decimals") or 0)
        raw_amount = ui.get("amount")
        if raw_amount is not None:
            amount = int(raw_amount)
        else:
            # Older nodes only return uiAmount
            amount = round(float(ui.get("uiAmount") or 0) * (10 ** decimals))
        return TokenBalance(
            account_index=int(item["accountIndex"]),
            mint=str(item["mint"]),
            owner=item.get("owner"),
            amount=amount,
            decimals=decimals,
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.debug("parser_skip_token_balance", error=str(e))
        return None


def _token_balances(values: Any) -> tuple[TokenBalance, ...]:
    if not isinstance(values, list):
        return ()
    parsed = (parse_token_balance(v) for v in values if isinstance(v, dict))
    return tuple(b for b in parsed if b is not None)


def parse_transaction(raw: dict[str, Any], signature: str | None = None) -> TransactionRecord:
    """
    Parse a getTransaction result into a TransactionRecord.

    Raises ValueError when the payload has no message or account keys; the
    fetcher treats that as a lost record.
    """
    message, meta = _get_message_and_meta(raw)
    if not message:
        raise ValueError("transaction payload has no message")
    account_keys = _get_account_keys(message, meta)
    if not account_keys:
        raise ValueError("transaction payload has no account keys")
    meta = meta or {}

    if signature is None:
        sigs = (raw.get("transaction") or {}).get("signatures") or []
        signature = sigs[0] if sigs else None
    if not signature:
        raise ValueError("transaction payload has no signature")

    block_time = raw.get("blockTime")
    if block_time is not None:
        try:
            block_time = int(block_time)
        except (TypeError, ValueError):
            block_time = None
    slot = raw.get("slot")

    return TransactionRecord(
        signature=signature,
        slot=int(slot) if slot is not None else None,
        block_time=block_time,
        fee=int(meta.get("fee") or 0),
        account_keys=tuple(account_keys),
        pre_balances=_int_list(meta.get("preBalances")),
        post_balances=_int_list(meta.get("postBalances")),
        pre_token_balances=_token_balances(meta.get("preTokenBalances")),
        post_token_balances=_token_balances(meta.get("postTokenBalances")),
        err=meta.get("err"),
    )


def parse_signatures(items: Any) -> list[SignatureInfo]:
    """Parse a getSignaturesForAddress result; skips malformed items."""
    infos: list[SignatureInfo] = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict) or "signature" not in item:
            continue
        try:
            infos.append(SignatureInfo.from_rpc_item(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("parser_skip_signature", error=str(e))
    return infos


def parse_token_accounts(value: Any) -> list[TokenAccount]:
    """
    Parse getTokenAccountsByOwner (jsonParsed) value list.

    Reads account.data.parsed.info only; entries without a mint or token
    amount are skipped.
    """
    accounts: list[TokenAccount] = []
    for entry in value if isinstance(value, list) else []:
        if not isinstance(entry, dict):
            continue
        data = (entry.get("account") or {}).get("data")
        # base64/base58 encodings come back as [payload, encoding]
        if not isinstance(data, dict) or not isinstance(data.get("parsed"), dict):
            continue
        info = data["parsed"].get("info")
        if not isinstance(info, dict):
            continue
        mint = info.get("mint")
        token_amount = info.get("tokenAmount") or {}
        if not mint or not isinstance(token_amount, dict):
            continue
        try:
            decimals = int(token_amount.get("decimals") or 0)
            amount = int(token_amount.get("amount") or 0)
        except (TypeError, ValueError):
            continue
        accounts.append(
            TokenAccount(
                pubkey=str(entry.get("pubkey") or ""),
                mint=str(mint),
                owner=info.get("owner"),
                amount=amount,
                decimals=decimals,
            )
        )
    return accounts
