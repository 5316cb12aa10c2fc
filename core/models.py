"""
Pydantic models for Outflow Watcher data structures.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field


LAMPORTS_PER_SOL = 1_000_000_000


class DigitPolicy(str, Enum):
    """How an amount is scaled to 4 decimals before the five-digit check."""
    TRUNCATE = "truncate"  # floor, drop anything finer than 0.0001 SOL
    EXACT = "exact"  # reject amounts that are not a multiple of 0.0001 SOL


class TransferKind(str, Enum):
    """System Program instructions that move lamports."""
    TRANSFER = "transfer"
    TRANSFER_WITH_SEED = "transferWithSeed"


class WindowOutcome(str, Enum):
    """Result of evaluating the outflow window."""
    FILLING = "filling"
    BELOW_THRESHOLD = "below_threshold"
    ALREADY_ALERTED = "already_alerted"
    TRIGGERED = "triggered"


class TransferEvent(BaseModel):
    """Native SOL transfer sent by the watched account."""
    destination: str
    lamports: int
    source_signature: str
    kind: TransferKind = TransferKind.TRANSFER


class OutflowTransfer(BaseModel):
    """Transfer summary stored with an outflow record."""
    destination: str
    lamports: int
    # Destination balances in the same transaction (None if unknown)
    destination_pre_balance: Optional[int] = None
    destination_post_balance: Optional[int] = None


class OutflowRecord(BaseModel):
    """A transaction in which the watched account sent SOL."""
    signature: str
    out_lamports: int  # total lamports sent by the watched account
    outflow_sol4: str  # out_lamports rendered to 4 decimals
    transfers: List[OutflowTransfer] = Field(default_factory=list)
    observed_at: datetime


class MonitorState(BaseModel):
    """Durable watcher state: cursor, window (newest first), last alert key."""
    watch_address: Optional[str] = None
    anchor_signature: Optional[str] = None
    outflows: List[OutflowRecord] = Field(default_factory=list)
    last_alert_key: Optional[str] = None


class Classification(BaseModel):
    """Pattern check result for a single amount."""
    lamports: int
    in_range: bool
    matches_digit_pattern: bool
    formatted: str

    @property
    def matched(self) -> bool:
        return self.in_range and self.matches_digit_pattern


class MatchedLine(BaseModel):
    """Matched amount and where it went."""
    formatted: str
    destination: Optional[str] = None  # None for net balance outflows


class RecordClassification(BaseModel):
    """Pattern check result for a whole outflow record."""
    signature: str
    in_range: bool
    match: Optional[MatchedLine] = None  # first match only


class WindowEvaluation(BaseModel):
    """Snapshot of a window evaluation."""
    outcome: WindowOutcome
    window_size: int
    in_range_count: int = 0
    match_count: int = 0
    alert_key: Optional[str] = None
    matches: List[MatchedLine] = Field(default_factory=list)


class OutflowAlert(BaseModel):
    """Everything the dispatcher needs to render an alert."""
    watch_address: str
    matched_lines: List[MatchedLine]
    destination_preview: List[str]
    distinct_destinations: int
    window_size: int
    in_range_count: int
    match_count: int
    min_sol: float
    max_sol: float
    required_match: int
