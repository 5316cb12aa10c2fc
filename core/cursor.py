"""
Signature cursor for the watched account.

The cursor (anchor signature) marks the newest transaction already
handled. Only signatures strictly newer than it are processed. Ordering
comes from the RPC's newest-first response, never from comparing
signature strings.
"""
import logging
from typing import List, Optional

from core.models import MonitorState

logger = logging.getLogger(__name__)


class CursorTracker:
    """Tracks the newest processed signature for one account."""

    def __init__(self, rpc, watch_address: str, fetch_limit: int):
        """
        Args:
            rpc: client exposing ``get_signatures_for_address(address, limit)``
            watch_address: account being monitored
            fetch_limit: max signatures requested per poll
        """
        self.rpc = rpc
        self.watch_address = watch_address
        self.fetch_limit = fetch_limit

    async def fetch_newest(self) -> Optional[str]:
        """Newest signature for the account, or None if it has no history."""
        items = await self.rpc.get_signatures_for_address(self.watch_address, 1)
        return items[0]["signature"] if items else None

    async def initialize(self, state: MonitorState) -> bool:
        """
        Warm-up: anchor on the current newest signature with an empty window.

        Existing history is skipped; only transactions after the anchor are
        evaluated. Returns True if a warm-up happened.
        """
        if state.anchor_signature is not None:
            return False

        newest = await self.fetch_newest()
        state.anchor_signature = newest
        state.outflows = []
        state.last_alert_key = None
        logger.info(f"Warm-up done. Anchor = {newest}")
        logger.info("Only transactions after this anchor will be processed")
        return True

    async def poll_new(self, cursor: Optional[str]) -> List[str]:
        """
        Signatures strictly newer than ``cursor``, newest first.

        If the cursor is older than the fetch limit reaches, every fetched
        signature is returned and the rest are never seen.
        """
        if cursor is None:
            return []

        items = await self.rpc.get_signatures_for_address(self.watch_address, self.fetch_limit)

        fresh = []
        for item in items:
            if item["signature"] == cursor:
                break
            fresh.append(item["signature"])
        else:
            if fresh:
                logger.warning(
                    f"Anchor {cursor} not in last {len(items)} signatures, "
                    f"older transactions were skipped"
                )
        return fresh

    @staticmethod
    def advance(state: MonitorState, signatures: List[str]) -> None:
        """Move the cursor to the newest fetched signature."""
        if signatures:
            state.anchor_signature = signatures[0]
