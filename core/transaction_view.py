"""
Read-only view over a Solana transaction as returned by getTransaction.

A transaction can be held in two forms:
- structured: encoding "jsonParsed", System Program instructions carry
  a decoded ``parsed`` dict and account keys are objects
- raw: encoding "json", instructions are compiled (programIdIndex,
  account indices, base58 data) and account keys are plain strings

Balance lookups work on whichever form is available.
"""
import logging
from typing import List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class BalanceDelta(NamedTuple):
    """Lamport balance of an account before and after a transaction."""
    pre: int
    post: int

    @property
    def change(self) -> int:
        return self.post - self.pre


def _key_to_str(key) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, dict):
        pubkey = key.get("pubkey")
        return pubkey if isinstance(pubkey, str) else ""
    return ""


def resolve_account_keys(tx: Optional[dict]) -> List[str]:
    """
    Full account key list for a transaction, in index order.

    Raw (v0) transactions reference lookup-table addresses by index after
    the static keys: writable first, then readonly. Structured responses
    already list them inside accountKeys.
    """
    if not isinstance(tx, dict):
        return []

    message = (tx.get("transaction") or {}).get("message") or {}
    raw_keys = message.get("accountKeys") or []
    keys = [_key_to_str(k) for k in raw_keys]

    structured = any(isinstance(k, dict) for k in raw_keys)
    meta = tx.get("meta") or {}
    loaded = meta.get("loadedAddresses") or {}
    if not structured and isinstance(loaded, dict):
        keys.extend(str(k) for k in loaded.get("writable") or [])
        keys.extend(str(k) for k in loaded.get("readonly") or [])

    return keys


class TransactionView:
    """A fetched transaction in its structured and/or raw form."""

    def __init__(self, signature: str, parsed: Optional[dict] = None, raw: Optional[dict] = None):
        self.signature = signature
        self.parsed = parsed if isinstance(parsed, dict) else None
        self.raw = raw if isinstance(raw, dict) else None

    @property
    def primary(self) -> Optional[dict]:
        """Form used for metadata lookups (structured preferred)."""
        return self.parsed or self.raw

    @property
    def is_available(self) -> bool:
        return self.primary is not None

    @property
    def has_structured(self) -> bool:
        """True when the structured form carries an instruction list."""
        if self.parsed is None:
            return False
        message = (self.parsed.get("transaction") or {}).get("message")
        return isinstance(message, dict) and isinstance(message.get("instructions"), list)

    @property
    def meta(self) -> dict:
        tx = self.primary or {}
        meta = tx.get("meta")
        return meta if isinstance(meta, dict) else {}

    @property
    def is_failed(self) -> bool:
        """Transaction landed but its instructions were rolled back."""
        return self.meta.get("err") is not None

    def account_keys(self) -> List[str]:
        return resolve_account_keys(self.primary)


def read_delta(transaction: TransactionView, account_address: str) -> Optional[BalanceDelta]:
    """
    Pre/post lamport balance of an account within a transaction.

    Returns None when the account is not part of the transaction or the
    balance metadata is missing.
    """
    try:
        keys = transaction.account_keys()
        if account_address not in keys:
            return None
        idx = keys.index(account_address)

        meta = transaction.meta
        pre_balances = meta.get("preBalances") or []
        post_balances = meta.get("postBalances") or []
        if idx >= len(pre_balances) or idx >= len(post_balances):
            return None

        pre = pre_balances[idx]
        post = post_balances[idx]
        if isinstance(pre, bool) or isinstance(post, bool):
            return None
        if not isinstance(pre, int) or not isinstance(post, int):
            return None
        return BalanceDelta(pre=pre, post=post)
    except (AttributeError, TypeError) as e:
        logger.debug(f"Balance lookup failed for {account_address} in {transaction.signature}: {e}")
        return None
