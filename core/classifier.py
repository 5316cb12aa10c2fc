"""
Numeric pattern classification of SOL amounts.

An amount matches when it is inside the configured SOL range and its
4-decimal representation has at most five digits, counting the leading
zero of amounts under 1 SOL:

    0.1234 SOL -> 01234 -> match
    1.8692 SOL -> 18692 -> match
   12.3456 SOL -> 123456 -> no match
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from core.models import (
    Classification, DigitPolicy, LAMPORTS_PER_SOL, MatchedLine,
    OutflowRecord, RecordClassification
)

logger = logging.getLogger(__name__)

# lamports per 0.0001 SOL
LAMPORTS_PER_TICK = LAMPORTS_PER_SOL // 10_000
MAX_FIVE_DIGIT_SCALED = 99_999


def lamports_to_sol(lamports: int) -> Decimal:
    """Exact SOL value of a lamport amount."""
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def format_sol4(lamports: int) -> str:
    """SOL with 4 decimals, truncated (how Solscan displays amounts)."""
    scaled = abs(lamports) // LAMPORTS_PER_TICK
    return f"{scaled // 10_000}.{scaled % 10_000:04d}"


def format_sol_exact(lamports: int) -> str:
    """Full-precision SOL, at least 4 decimals, no trailing zeros beyond that."""
    text = format(lamports_to_sol(abs(lamports)), "f")
    whole, _, frac = text.partition(".")
    frac = frac.rstrip("0").ljust(4, "0")
    return f"{whole}.{frac}"


class PatternClassifier:
    """Range + five-digit pattern rule with a selectable scaling policy."""

    def __init__(
        self,
        min_sol: float,
        max_sol: float,
        digit_policy: DigitPolicy = DigitPolicy.TRUNCATE,
        fresh_destination_gate: bool = False,
    ):
        # str() keeps 0.1 as 0.1 instead of its binary float expansion
        self.min_sol = Decimal(str(min_sol))
        self.max_sol = Decimal(str(max_sol))
        self.digit_policy = DigitPolicy(digit_policy)
        self.fresh_destination_gate = fresh_destination_gate

    def in_range(self, lamports: int) -> bool:
        sol = lamports_to_sol(abs(lamports))
        return self.min_sol <= sol <= self.max_sol

    def matches_digit_pattern(self, lamports: int) -> bool:
        amount = abs(lamports)
        if self.digit_policy == DigitPolicy.EXACT and amount % LAMPORTS_PER_TICK != 0:
            return False
        scaled = amount // LAMPORTS_PER_TICK
        return 0 <= scaled <= MAX_FIVE_DIGIT_SCALED

    def format_amount(self, lamports: int) -> str:
        if self.digit_policy == DigitPolicy.EXACT and abs(lamports) % LAMPORTS_PER_TICK != 0:
            return format_sol_exact(lamports)
        return format_sol4(lamports)

    def classify(self, lamports: int) -> Classification:
        return Classification(
            lamports=lamports,
            in_range=self.in_range(lamports),
            matches_digit_pattern=self.matches_digit_pattern(lamports),
            formatted=self.format_amount(lamports),
        )

    def _candidates(self, record: OutflowRecord) -> List[Tuple[int, Optional[str]]]:
        """(amount, destination) pairs to classify, in extraction order."""
        if not record.transfers:
            # Net balance outflow without decoded transfers
            if self.fresh_destination_gate:
                return []
            return [(record.out_lamports, None)]

        candidates = []
        for transfer in record.transfers:
            if self.fresh_destination_gate:
                if transfer.destination_pre_balance != 0 or transfer.destination_post_balance is None:
                    continue
                candidates.append((transfer.destination_post_balance, transfer.destination))
            else:
                candidates.append((transfer.lamports, transfer.destination))
        return candidates

    def classify_record(self, record: OutflowRecord) -> RecordClassification:
        """
        Classify one outflow transaction.

        Only the first matching transfer counts, so a single transaction
        contributes at most one match to the window.
        """
        in_range = False
        match = None
        for lamports, destination in self._candidates(record):
            result = self.classify(lamports)
            in_range = in_range or result.in_range
            if match is None and result.matched:
                match = MatchedLine(formatted=result.formatted, destination=destination)
        return RecordClassification(signature=record.signature, in_range=in_range, match=match)
