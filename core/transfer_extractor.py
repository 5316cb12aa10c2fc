"""
Outgoing SOL transfer extraction.

Two strategies run in order against a TransactionView:
1. ParsedInstructionStrategy - reads System Program transfers the RPC node
   already decoded (encoding "jsonParsed")
2. CompiledInstructionStrategy - decodes raw System Program instruction
   bytes (encoding "json") and resolves accounts by index

Each strategy reports a DecodeResult; on failure the extractor falls back
to the next strategy.
"""
import logging
import struct
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

import base58

from core.errors import DecodeError
from core.models import TransferEvent, TransferKind
from core.transaction_view import TransactionView, resolve_account_keys

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

# System Program instruction discriminants (u32 little-endian)
SYSTEM_IX_TRANSFER = 2
SYSTEM_IX_TRANSFER_WITH_SEED = 11

# discriminant + u64 lamports
_TRANSFER_HEADER = struct.Struct("<IQ")


@dataclass
class DecodeResult:
    """Outcome of one decode strategy."""
    ok: bool
    events: List[TransferEvent] = field(default_factory=list)
    error: Optional[DecodeError] = None

    @classmethod
    def failure(cls, strategy: str, message: str) -> "DecodeResult":
        return cls(ok=False, error=DecodeError(strategy, message))


def parse_lamports(value) -> Optional[int]:
    """Positive integer lamports from an int or numeric string, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        lamports = value
    elif isinstance(value, str):
        text = value.strip()
        # ASCII only: isdigit() also accepts characters like "²"
        if not (text.isascii() and text.isdigit()):
            return None
        lamports = int(text)
    else:
        return None
    return lamports if lamports > 0 else None


def _ordered_instructions(tx: dict) -> Iterator[dict]:
    """Outer instructions, each followed by the inner instructions it spawned."""
    message = tx["transaction"]["message"]
    outer = message["instructions"]
    meta = tx.get("meta") or {}

    inner_by_index = {}
    for item in meta.get("innerInstructions") or []:
        if isinstance(item, dict):
            inner_by_index.setdefault(item.get("index"), []).extend(item.get("instructions") or [])

    for i, ix in enumerate(outer):
        yield ix
        yield from inner_by_index.pop(i, [])

    # Inner groups pointing at unknown outer indices
    for leftovers in inner_by_index.values():
        yield from leftovers


class ParsedInstructionStrategy:
    """Transfers from node-decoded System Program instructions."""

    name = "parsed"

    def decode(self, transaction: TransactionView, watched_address: str) -> DecodeResult:
        if not transaction.has_structured:
            return DecodeResult.failure(self.name, "structured form unavailable")
        if transaction.is_failed:
            return DecodeResult(ok=True)

        try:
            events = []
            for ix in _ordered_instructions(transaction.parsed):
                event = self._transfer_from(ix, watched_address, transaction.signature)
                if event is not None:
                    events.append(event)
            return DecodeResult(ok=True, events=events)
        except (KeyError, TypeError, AttributeError) as e:
            return DecodeResult.failure(self.name, f"malformed instruction list: {e}")

    @staticmethod
    def _transfer_from(ix, watched_address: str, signature: str) -> Optional[TransferEvent]:
        if not isinstance(ix, dict):
            return None
        if ix.get("program") != "system" and ix.get("programId") != SYSTEM_PROGRAM_ID:
            return None

        parsed = ix.get("parsed")
        if not isinstance(parsed, dict):
            return None

        try:
            kind = TransferKind(parsed.get("type"))
        except ValueError:
            return None

        info = parsed.get("info") or {}
        source = info.get("source")
        destination = info.get("destination")
        if not source or not destination or source != watched_address:
            return None

        lamports = parse_lamports(info.get("lamports"))
        if lamports is None:
            return None

        return TransferEvent(
            destination=destination,
            lamports=lamports,
            source_signature=signature,
            kind=kind,
        )


class CompiledInstructionStrategy:
    """Transfers decoded from raw System Program instruction data."""

    name = "compiled"

    def decode(self, transaction: TransactionView, watched_address: str) -> DecodeResult:
        tx = transaction.raw
        if tx is None:
            return DecodeResult.failure(self.name, "raw form unavailable")
        if not isinstance(tx.get("meta"), dict):
            return DecodeResult.failure(self.name, "transaction meta missing")
        if transaction.is_failed:
            return DecodeResult(ok=True)

        keys = resolve_account_keys(tx)
        try:
            events = []
            for ix in _ordered_instructions(tx):
                event = self._transfer_from(ix, keys, watched_address, transaction.signature)
                if event is not None:
                    events.append(event)
            return DecodeResult(ok=True, events=events)
        except (KeyError, TypeError, AttributeError) as e:
            return DecodeResult.failure(self.name, f"malformed instruction list: {e}")

    def _transfer_from(self, ix, keys: Sequence[str], watched_address: str,
                       signature: str) -> Optional[TransferEvent]:
        if not isinstance(ix, dict):
            return None

        program_id = self._key_at(keys, ix.get("programIdIndex"))
        if program_id != SYSTEM_PROGRAM_ID:
            return None

        data = self._decode_data(ix.get("data"))
        if data is None or len(data) < _TRANSFER_HEADER.size:
            return None

        discriminant, lamports = _TRANSFER_HEADER.unpack_from(data)
        accounts = ix.get("accounts") or []

        if discriminant == SYSTEM_IX_TRANSFER and len(accounts) >= 2:
            kind = TransferKind.TRANSFER
            source = self._key_at(keys, accounts[0])
            destination = self._key_at(keys, accounts[1])
        elif discriminant == SYSTEM_IX_TRANSFER_WITH_SEED and len(accounts) >= 3:
            # accounts: [from (derived), base, to]
            kind = TransferKind.TRANSFER_WITH_SEED
            source = self._key_at(keys, accounts[0])
            destination = self._key_at(keys, accounts[2])
        else:
            return None

        if source != watched_address or not destination or lamports <= 0:
            return None

        return TransferEvent(
            destination=destination,
            lamports=lamports,
            source_signature=signature,
            kind=kind,
        )

    @staticmethod
    def _key_at(keys: Sequence[str], index) -> Optional[str]:
        if isinstance(index, bool) or not isinstance(index, int):
            return None
        if 0 <= index < len(keys):
            return keys[index] or None
        return None

    @staticmethod
    def _decode_data(data) -> Optional[bytes]:
        if not isinstance(data, str) or not data:
            return None
        try:
            return base58.b58decode(data)
        except ValueError:
            return None


DEFAULT_STRATEGIES = (ParsedInstructionStrategy(), CompiledInstructionStrategy())


def decode_transfers(transaction: TransactionView, watched_address: str,
                     strategies=DEFAULT_STRATEGIES) -> DecodeResult:
    """
    Run strategies in order and return the first successful result.

    When every strategy fails, the last failure is returned.
    """
    result = DecodeResult.failure("extractor", "no strategy configured")
    for strategy in strategies:
        try:
            result = strategy.decode(transaction, watched_address)
        except Exception as e:
            result = DecodeResult.failure(getattr(strategy, "name", "unknown"), str(e))
        if result.ok:
            return result
        logger.debug(f"{transaction.signature}: {result.error}")
    return result


def extract_outgoing_transfers(transaction: TransactionView, watched_address: str) -> List[TransferEvent]:
    """
    All native SOL transfers sent by watched_address in a transaction.

    Never raises; returns an empty list when nothing can be decoded.
    """
    result = decode_transfers(transaction, watched_address)
    return result.events if result.ok else []
