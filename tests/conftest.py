"""
Shared fixtures: fake ledger, in-memory store, recording notifier and
transaction builders shaped like Solana getTransaction responses.
"""
import struct
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import base58
import pytest

from config import Settings
from core.errors import DeliveryError, TransientFetchError
from core.models import MonitorState
from core.solana_rpc import ENCODING_PARSED, ENCODING_RAW

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


def make_address(seed: int) -> str:
    """Deterministic valid 32-byte base58 address."""
    return base58.b58encode(bytes([seed]) * 32).decode()


WATCH = make_address(7)
DEST_A = make_address(21)
DEST_B = make_address(22)
DEST_C = make_address(23)
STRANGER = make_address(99)


def sol(amount: str) -> int:
    """Lamports for a decimal SOL string."""
    return int(Decimal(amount) * 1_000_000_000)


def parsed_transfer_ix(source: str, destination: str, lamports, kind: str = "transfer") -> dict:
    info = {"source": source, "destination": destination, "lamports": lamports}
    if kind == "transferWithSeed":
        info.update({"sourceBase": source, "sourceSeed": "seed", "sourceOwner": SYSTEM_PROGRAM_ID})
    return {
        "program": "system",
        "programId": SYSTEM_PROGRAM_ID,
        "parsed": {"type": kind, "info": info},
        "stackHeight": None,
    }


def parsed_tx(
    transfers: List[Tuple[str, int]],
    source: str = WATCH,
    inner: Optional[List[dict]] = None,
    err=None,
    dest_pre: Optional[Dict[str, int]] = None,
    source_pre: int = sol("100"),
) -> dict:
    """jsonParsed-style transaction with System transfers from ``source``."""
    dest_pre = dest_pre or {}
    keys = [source]
    for destination, _ in transfers:
        if destination not in keys:
            keys.append(destination)
    keys.append(SYSTEM_PROGRAM_ID)

    pre = {k: 0 for k in keys}
    pre[source] = source_pre
    pre.update(dest_pre)
    post = dict(pre)
    for destination, lamports in transfers:
        post[source] -= lamports
        post[destination] += lamports
    post[source] -= 5000  # fee

    return {
        "slot": 1,
        "blockTime": 1_700_000_000,
        "meta": {
            "err": err,
            "fee": 5000,
            "preBalances": [pre[k] for k in keys],
            "postBalances": [post[k] for k in keys],
            "innerInstructions": inner or [],
        },
        "transaction": {
            "signatures": ["x"],
            "message": {
                "accountKeys": [
                    {"pubkey": k, "signer": i == 0, "writable": k != SYSTEM_PROGRAM_ID, "source": "transaction"}
                    for i, k in enumerate(keys)
                ],
                "instructions": [parsed_transfer_ix(source, d, l) for d, l in transfers],
            },
        },
    }


def compiled_data(discriminant: int, lamports: int, extra: bytes = b"") -> str:
    return base58.b58encode(struct.pack("<IQ", discriminant, lamports) + extra).decode()


def raw_tx(
    transfers: List[Tuple[str, int]],
    source: str = WATCH,
    err=None,
) -> dict:
    """json-encoded (compiled) transaction with System transfers from ``source``."""
    keys = [source]
    for destination, _ in transfers:
        if destination not in keys:
            keys.append(destination)
    keys.append(SYSTEM_PROGRAM_ID)
    program_index = len(keys) - 1

    return {
        "slot": 1,
        "blockTime": 1_700_000_000,
        "meta": {
            "err": err,
            "fee": 5000,
            "preBalances": [0] * len(keys),
            "postBalances": [0] * len(keys),
            "innerInstructions": [],
            "loadedAddresses": {"writable": [], "readonly": []},
        },
        "transaction": {
            "signatures": ["x"],
            "message": {
                "accountKeys": keys,
                "instructions": [
                    {
                        "programIdIndex": program_index,
                        "accounts": [0, keys.index(d)],
                        "data": compiled_data(2, l),
                    }
                    for d, l in transfers
                ],
            },
        },
    }


class FakeLedger:
    """In-memory stand-in for SolanaRPCClient."""

    def __init__(self):
        self.signatures: List[str] = []  # newest first
        self.transactions: Dict[Tuple[str, str], Optional[dict]] = {}
        self.fail_signatures = False
        self.failing_transactions = set()
        self.requests: List[Tuple[str, str]] = []

    def add(self, signature: str, parsed: Optional[dict] = None, raw: Optional[dict] = None):
        self.signatures.insert(0, signature)
        self.transactions[(signature, ENCODING_PARSED)] = parsed
        self.transactions[(signature, ENCODING_RAW)] = raw

    async def get_signatures_for_address(self, address: str, limit: int) -> List[dict]:
        if self.fail_signatures:
            raise TransientFetchError("getSignaturesForAddress", "connection reset")
        return [{"signature": s, "err": None} for s in self.signatures[:limit]]

    async def get_transaction(self, signature: str, encoding: str = ENCODING_PARSED) -> Optional[dict]:
        self.requests.append((signature, encoding))
        if signature in self.failing_transactions:
            raise TransientFetchError("getTransaction", "timeout", signature)
        return self.transactions.get((signature, encoding))


class MemoryStore:
    """State store keeping deep copies of every save."""

    def __init__(self):
        self.saved: List[MonitorState] = []
        self.fail = False

    async def save_state(self, state: MonitorState) -> bool:
        if self.fail:
            return False
        self.saved.append(state.model_copy(deep=True))
        return True

    @property
    def last(self) -> Optional[MonitorState]:
        return self.saved[-1] if self.saved else None


class RecordingNotifier:
    """Collects alerts instead of sending them."""

    def __init__(self, fail: bool = False):
        self.alerts = []
        self.fail = fail

    async def notify_alert(self, alert):
        self.alerts.append(alert)
        if self.fail:
            raise DeliveryError("discord", "HTTP 500")


def make_settings(**overrides) -> Settings:
    values = dict(
        rpc_url="https://rpc.example.invalid",
        watch_address=WATCH,
        discord_webhook_url="https://discord.example.invalid/api/webhooks/1/abc",
        min_sol=0.1,
        max_sol=20,
        window_outflows=3,
        required_match=2,
        sig_fetch_limit=60,
        preview_dest_limit=10,
        poll_seconds=1,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()
