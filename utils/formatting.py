"""
Message formatting utilities for outflow pattern alerts.
"""
from core.models import OutflowAlert, OutflowRecord


SOLSCAN_BASE_URL = "https://solscan.io"


def solscan_tx_url(signature: str) -> str:
    return f"{SOLSCAN_BASE_URL}/tx/{signature}"


def solscan_account_url(address: str) -> str:
    return f"{SOLSCAN_BASE_URL}/account/{address}"


def format_address(address: str, length: int = 6) -> str:
    """
    Shorten an address for log lines (AbCdEf...uVwXyZ).

    Args:
        address: Full base58 address
        length: Number of characters to show on each side
    """
    if not address or len(address) <= length * 2:
        return address

    return f"{address[:length]}...{address[-length:]}"


def format_range(min_sol: float, max_sol: float) -> str:
    return f"{min_sol:g} → {max_sol:g}"


def format_outflow_alert(alert: OutflowAlert) -> str:
    """
    Format a pattern trigger into a plain-text alert.

    Destinations are printed in full so they can be copied straight into
    an explorer.

    Args:
        alert: The alert payload built from the triggering window

    Returns:
        Formatted message string with emojis
    """
    lines = ["🚨 SOL Outflow Pattern Trigger"]

    if not alert.matched_lines:
        lines.append("None")
    else:
        for i, line in enumerate(alert.matched_lines, start=1):
            destination = line.destination or "(net balance outflow)"
            lines.append(f"{i}) {line.formatted} SOL — {destination}")

    lines.append("")
    lines.append("Source (watch)")
    lines.append(alert.watch_address)
    lines.append(solscan_account_url(alert.watch_address))

    lines.append("")
    lines.append(f"Matched destination wallets ({alert.distinct_destinations} distinct, preview)")
    if not alert.destination_preview:
        lines.append("None")
    else:
        lines.extend(alert.destination_preview)

    lines.append("")
    lines.append(f"Window (outflows): {alert.window_size}")
    lines.append(f"In range: {alert.in_range_count}")
    lines.append(f"Five-digits: {alert.match_count}")
    lines.append(f"Range (SOL): {format_range(alert.min_sol, alert.max_sol)}")
    lines.append(f"Required: {alert.required_match}")

    lines.append("")
    lines.append("Bot: new-only after trigger | writes DEST wallets only")

    return "\n".join(lines)


def format_outflow_record(record: OutflowRecord) -> str:
    """One-line summary of an outflow record for the outflows log."""
    destinations = ", ".join(format_address(t.destination) for t in record.transfers) or "-"
    return f"{record.outflow_sol4} SOL → {destinations} | {solscan_tx_url(record.signature)}"
