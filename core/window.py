"""
Sliding window of outflow transactions and alert state machine.

The window holds the N most recent outflow records, newest first. Once
full it is evaluated every cycle:

    matches >= required and key != last key  -> TRIGGERED
    matches >= required and key == last key  -> ALREADY_ALERTED
    matches <  required                      -> BELOW_THRESHOLD

The alert key fingerprints the window contents so the same window can
never alert twice.
"""
import logging
from typing import List, Optional

from core.classifier import PatternClassifier
from core.models import (
    MonitorState, OutflowRecord, WindowEvaluation, WindowOutcome
)

logger = logging.getLogger(__name__)


def make_alert_key(outflows: List[OutflowRecord]) -> str:
    """Deterministic fingerprint of window contents."""
    return "|".join(record.signature for record in outflows)


class OutflowWindow:
    """Bounded newest-first window backed by MonitorState."""

    def __init__(self, state: MonitorState, capacity: int, required_match: int,
                 classifier: PatternClassifier):
        self.state = state
        self.capacity = capacity
        self.required_match = required_match
        self.classifier = classifier

    def __len__(self) -> int:
        return len(self.state.outflows)

    @property
    def is_ready(self) -> bool:
        return len(self.state.outflows) >= self.capacity

    def push(self, record: OutflowRecord) -> None:
        """Insert as newest and evict the oldest beyond capacity."""
        self.state.outflows.insert(0, record)
        if len(self.state.outflows) > self.capacity:
            del self.state.outflows[self.capacity:]

    def evaluate(self) -> WindowEvaluation:
        """Classify every window member and decide whether to alert."""
        size = len(self.state.outflows)
        if not self.is_ready:
            return WindowEvaluation(outcome=WindowOutcome.FILLING, window_size=size)

        results = [self.classifier.classify_record(r) for r in self.state.outflows]
        in_range_count = sum(1 for r in results if r.in_range)
        matches = [r.match for r in results if r.match is not None]
        alert_key = make_alert_key(self.state.outflows)

        if len(matches) < self.required_match:
            outcome = WindowOutcome.BELOW_THRESHOLD
        elif alert_key == self.state.last_alert_key:
            outcome = WindowOutcome.ALREADY_ALERTED
        else:
            outcome = WindowOutcome.TRIGGERED

        return WindowEvaluation(
            outcome=outcome,
            window_size=size,
            in_range_count=in_range_count,
            match_count=len(matches),
            alert_key=alert_key,
            matches=matches,
        )

    def mark_alerted(self, alert_key: str) -> None:
        self.state.last_alert_key = alert_key

    def reset(self, anchor_signature: Optional[str]) -> None:
        """Start a fresh window strictly after the trigger."""
        self.state.outflows = []
        self.state.last_alert_key = None
        self.state.anchor_signature = anchor_signature
