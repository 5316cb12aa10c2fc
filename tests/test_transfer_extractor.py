import struct

import base58

from conftest import (
    DEST_A, DEST_B, DEST_C, STRANGER, SYSTEM_PROGRAM_ID, WATCH,
    compiled_data, parsed_transfer_ix, parsed_tx, raw_tx, sol
)
from core.errors import DecodeError
from core.models import TransferKind
from core.transaction_view import TransactionView, read_delta
from core.transfer_extractor import (
    CompiledInstructionStrategy, ParsedInstructionStrategy,
    decode_transfers, extract_outgoing_transfers, parse_lamports
)


def test_parsed_outer_transfers():
    view = TransactionView("s1", parsed=parsed_tx([(DEST_A, sol("1.2345")), (DEST_B, sol("0.5"))]))
    events = extract_outgoing_transfers(view, WATCH)
    assert [(e.destination, e.lamports) for e in events] == [(DEST_A, sol("1.2345")), (DEST_B, sol("0.5"))]
    assert all(e.source_signature == "s1" for e in events)


def test_parsed_inner_instructions_follow_their_outer_instruction():
    tx = parsed_tx(
        [(DEST_A, sol("1")), (DEST_B, sol("2"))],
        inner=[{"index": 0, "instructions": [parsed_transfer_ix(WATCH, DEST_C, sol("3"))]}],
    )
    events = extract_outgoing_transfers(TransactionView("s", parsed=tx), WATCH)
    assert [e.destination for e in events] == [DEST_A, DEST_C, DEST_B]


def test_parsed_ignores_foreign_sources_and_other_programs():
    tx = parsed_tx([(DEST_A, sol("1"))])
    message = tx["transaction"]["message"]
    message["instructions"].append(parsed_transfer_ix(STRANGER, DEST_B, sol("1")))
    message["instructions"].append({
        "program": "spl-token",
        "programId": "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
        "parsed": {"type": "transfer", "info": {"source": WATCH, "destination": DEST_C, "amount": "5"}},
    })
    events = extract_outgoing_transfers(TransactionView("s", parsed=tx), WATCH)
    assert [e.destination for e in events] == [DEST_A]


def test_parsed_drops_invalid_amounts_and_accepts_numeric_strings():
    tx = parsed_tx([])
    tx["transaction"]["message"]["instructions"] = [
        parsed_transfer_ix(WATCH, DEST_A, 0),
        parsed_transfer_ix(WATCH, DEST_A, -5),
        parsed_transfer_ix(WATCH, DEST_A, "abc"),
        parsed_transfer_ix(WATCH, DEST_A, True),
        parsed_transfer_ix(WATCH, DEST_B, "1500000000"),
    ]
    events = extract_outgoing_transfers(TransactionView("s", parsed=tx), WATCH)
    assert [(e.destination, e.lamports) for e in events] == [(DEST_B, 1_500_000_000)]


def test_parsed_transfer_with_seed():
    tx = parsed_tx([])
    tx["transaction"]["message"]["instructions"] = [
        parsed_transfer_ix(WATCH, DEST_A, sol("0.7"), kind="transferWithSeed"),
    ]
    (event,) = extract_outgoing_transfers(TransactionView("s", parsed=tx), WATCH)
    assert event.kind == TransferKind.TRANSFER_WITH_SEED


def test_failed_transaction_yields_nothing():
    view = TransactionView("s", parsed=parsed_tx([(DEST_A, sol("1"))], err={"InstructionError": [0, "Custom"]}))
    assert extract_outgoing_transfers(view, WATCH) == []


def test_compiled_fallback_when_structured_missing():
    view = TransactionView("s", raw=raw_tx([(DEST_A, sol("1.2345"))]))
    result = decode_transfers(view, WATCH)
    assert result.ok
    assert [(e.destination, e.lamports) for e in result.events] == [(DEST_A, sol("1.2345"))]


def test_compiled_transfer_with_seed_uses_third_account():
    tx = raw_tx([])
    tx["transaction"]["message"]["accountKeys"] = [WATCH, STRANGER, DEST_B, SYSTEM_PROGRAM_ID]
    seed = b"abc"
    extra = struct.pack("<Q", len(seed)) + seed + bytes(32)
    tx["transaction"]["message"]["instructions"] = [
        {"programIdIndex": 3, "accounts": [0, 1, 2], "data": compiled_data(11, sol("2"), extra)},
    ]
    tx["meta"]["preBalances"] = [0, 0, 0, 0]
    tx["meta"]["postBalances"] = [0, 0, 0, 0]
    (event,) = extract_outgoing_transfers(TransactionView("s", raw=tx), WATCH)
    assert event.destination == DEST_B
    assert event.kind == TransferKind.TRANSFER_WITH_SEED


def test_compiled_resolves_loaded_addresses():
    tx = raw_tx([])
    tx["transaction"]["message"]["accountKeys"] = [WATCH, SYSTEM_PROGRAM_ID]
    tx["meta"]["loadedAddresses"] = {"writable": [DEST_C], "readonly": []}
    tx["transaction"]["message"]["instructions"] = [
        {"programIdIndex": 1, "accounts": [0, 2], "data": compiled_data(2, sol("4"))},
    ]
    (event,) = extract_outgoing_transfers(TransactionView("s", raw=tx), WATCH)
    assert event.destination == DEST_C


def test_compiled_ignores_other_sources_and_bad_data():
    tx = raw_tx([(DEST_A, sol("1"))], source=STRANGER)
    tx["transaction"]["message"]["instructions"].append(
        {"programIdIndex": 2, "accounts": [0, 1], "data": "0OIl"}
    )
    tx["transaction"]["message"]["instructions"].append(
        {"programIdIndex": 2, "accounts": [0, 1], "data": base58.b58encode(b"\x02\x00").decode()}
    )
    assert extract_outgoing_transfers(TransactionView("s", raw=tx), WATCH) == []


def test_strategies_report_unavailable_forms():
    view = TransactionView("s")
    parsed_result = ParsedInstructionStrategy().decode(view, WATCH)
    compiled_result = CompiledInstructionStrategy().decode(view, WATCH)
    assert not parsed_result.ok and isinstance(parsed_result.error, DecodeError)
    assert not compiled_result.ok and compiled_result.error.strategy == "compiled"

    result = decode_transfers(view, WATCH)
    assert not result.ok
    assert extract_outgoing_transfers(view, WATCH) == []


def test_malformed_input_never_raises():
    broken = [
        {"transaction": None},
        {"transaction": {"message": {"instructions": "nope"}}},
        {"transaction": {"message": {"instructions": [None, 5, "x"]}}, "meta": {"innerInstructions": "bad"}},
    ]
    for tx in broken:
        assert extract_outgoing_transfers(TransactionView("s", parsed=tx, raw=tx), WATCH) == []


def test_parse_lamports():
    assert parse_lamports(10) == 10
    assert parse_lamports(" 42 ") == 42
    assert parse_lamports("1.5") is None
    assert parse_lamports(None) is None


def test_read_delta():
    view = TransactionView("s", parsed=parsed_tx([(DEST_A, sol("1"))], dest_pre={DEST_A: sol("2")}))
    delta = read_delta(view, DEST_A)
    assert delta.pre == sol("2")
    assert delta.post == sol("3")
    assert delta.change == sol("1")

    assert read_delta(view, STRANGER) is None

    view.parsed["meta"]["postBalances"] = []
    assert read_delta(view, DEST_A) is None


def test_non_ascii_digit_amount_drops_only_that_transfer():
    tx = parsed_tx([])
    tx["transaction"]["message"]["instructions"] = [
        parsed_transfer_ix(WATCH, DEST_A, sol("1.2345")),
        parsed_transfer_ix(WATCH, DEST_B, "²"),
        parsed_transfer_ix(WATCH, DEST_C, "١٢٣"),
    ]
    events = extract_outgoing_transfers(TransactionView("s", parsed=tx), WATCH)
    assert [(e.destination, e.lamports) for e in events] == [(DEST_A, sol("1.2345"))]
    assert parse_lamports("²") is None
