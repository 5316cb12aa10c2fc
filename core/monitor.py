"""
Outflow monitor: one polling cycle and the loop around it.

Each cycle
1. polls signatures newer than the cursor
2. fetches and decodes those transactions, oldest first
3. advances the cursor and pushes outflow records into the window
4. evaluates the window and, on a new trigger, dispatches one alert and
   resets the window behind a fresh anchor
5. persists the state once

All RPC reads for steps 1-2 finish before the state is touched.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from core.classifier import PatternClassifier
from core.cursor import CursorTracker
from core.errors import DeliveryError, TransientFetchError, WatcherError
from core.models import (
    MonitorState, OutflowAlert, OutflowRecord, OutflowTransfer,
    TransferEvent, WindowEvaluation, WindowOutcome
)
from core.solana_rpc import ENCODING_PARSED, ENCODING_RAW
from core.transaction_view import TransactionView, read_delta
from core.transfer_extractor import decode_transfers, extract_outgoing_transfers
from core.window import OutflowWindow
from utils.formatting import format_address, format_outflow_record

logger = logging.getLogger(__name__)
outflows_logger = logging.getLogger('outflows')
alerts_logger = logging.getLogger('alerts')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OutflowMonitor:
    """Runs polling cycles for one watched account."""

    def __init__(
        self,
        settings,
        rpc,
        store,
        notifier,
        state: MonitorState,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        """
        Args:
            settings: Settings (or any object with the same attributes)
            rpc: Solana RPC client
            store: state store with ``save_state(state) -> bool``
            notifier: dispatcher with ``notify_alert(alert)``
            state: state loaded at startup; mutated in place
            clock: source of observed_at timestamps
            sleep: coroutine used between cycles
        """
        self.settings = settings
        self.rpc = rpc
        self.store = store
        self.notifier = notifier
        self.watch_address = settings.watch_address
        self._clock = clock
        self._sleep = sleep

        self.cursor = CursorTracker(rpc, settings.watch_address, settings.sig_fetch_limit)
        self.classifier = PatternClassifier(
            min_sol=settings.min_sol,
            max_sol=settings.max_sol,
            digit_policy=settings.digit_policy,
            fresh_destination_gate=settings.fresh_destination_gate,
        )
        self.window = OutflowWindow(
            state=state,
            capacity=settings.window_outflows,
            required_match=settings.required_match,
            classifier=self.classifier,
        )

    @property
    def state(self) -> MonitorState:
        return self.window.state

    async def warm_up(self) -> bool:
        """Anchor on the newest signature if no cursor is stored yet."""
        if self.state.anchor_signature is not None:
            return False
        warmed = await self.cursor.initialize(self.state)
        await self.store.save_state(self.state)
        return warmed

    async def prepare(self):
        """Log the loaded state and run warm-up when needed."""
        if self.state.anchor_signature is None:
            await self.warm_up()
        else:
            logger.info(f"Loaded state. Anchor = {self.state.anchor_signature}")
            logger.info(f"Loaded outflows window: {len(self.window)}/{self.window.capacity}")

    # ===== Reads =====

    async def _fetch_transaction(self, signature: str, encoding: str) -> Optional[dict]:
        try:
            return await self.rpc.get_transaction(signature, encoding)
        except TransientFetchError as e:
            logger.warning(f"Skipping {encoding} form: {e}")
            return None

    async def fetch_view(self, signature: str) -> TransactionView:
        """Structured form first; raw form only when the structured form is missing or undecodable."""
        view = TransactionView(signature, parsed=await self._fetch_transaction(signature, ENCODING_PARSED))
        if not decode_transfers(view, self.watch_address).ok:
            view.raw = await self._fetch_transaction(signature, ENCODING_RAW)
        return view

    def build_record(self, view: TransactionView) -> Optional[OutflowRecord]:
        """Outflow record for a transaction, or None if nothing left the account."""
        events: List[TransferEvent] = extract_outgoing_transfers(view, self.watch_address)

        if events:
            transfers = []
            for event in events:
                delta = read_delta(view, event.destination)
                transfers.append(OutflowTransfer(
                    destination=event.destination,
                    lamports=event.lamports,
                    destination_pre_balance=delta.pre if delta else None,
                    destination_post_balance=delta.post if delta else None,
                ))
            out_lamports = sum(t.lamports for t in transfers)
        elif self.settings.count_balance_outflows:
            delta = read_delta(view, self.watch_address)
            if delta is None or delta.change >= 0:
                return None
            transfers = []
            out_lamports = -delta.change
        else:
            return None

        return OutflowRecord(
            signature=view.signature,
            out_lamports=out_lamports,
            outflow_sol4=self.classifier.format_amount(out_lamports),
            transfers=transfers,
            observed_at=self._clock(),
        )

    async def collect_outflows(self, signatures: List[str]) -> List[OutflowRecord]:
        """Decode new signatures oldest first; unavailable ones are skipped."""
        records = []
        for signature in reversed(signatures):
            view = await self.fetch_view(signature)
            if not view.is_available:
                logger.warning(f"Transaction {signature} unavailable, skipped")
                continue
            record = self.build_record(view)
            if record is not None:
                records.append(record)
        return records

    # ===== Cycle =====

    async def run_cycle(self) -> WindowEvaluation:
        """
        Run one polling cycle.

        Raises:
            TransientFetchError: if the signature poll fails (state untouched)
        """
        if self.state.anchor_signature is None:
            await self.warm_up()
            return WindowEvaluation(outcome=WindowOutcome.FILLING, window_size=len(self.window))

        new_signatures = await self.cursor.poll_new(self.state.anchor_signature)
        records = await self.collect_outflows(new_signatures)

        self.cursor.advance(self.state, new_signatures)
        for record in records:
            self.window.push(record)
            outflows_logger.info(format_outflow_record(record))

        if new_signatures:
            logger.info(f"New signatures: {len(new_signatures)} | Added outflows: {len(records)}")

        evaluation = self.window.evaluate()
        self._log_evaluation(evaluation, len(new_signatures))

        if evaluation.outcome == WindowOutcome.TRIGGERED:
            await self.trigger(evaluation)

        await self.store.save_state(self.state)
        return evaluation

    def _log_evaluation(self, evaluation: WindowEvaluation, new_count: int):
        if evaluation.outcome == WindowOutcome.FILLING:
            logger.info(
                f"Waiting outflows: {evaluation.window_size}/{self.window.capacity} (new sigs={new_count})"
            )
            return

        logger.info(
            f"Outflows window={evaluation.window_size} | In range={evaluation.in_range_count} | "
            f"Five-digits={evaluation.match_count}"
        )
        if evaluation.outcome == WindowOutcome.ALREADY_ALERTED:
            logger.info("Trigger already sent for this window")

    def build_alert(self, evaluation: WindowEvaluation) -> OutflowAlert:
        limit = self.settings.preview_dest_limit
        destinations = list(dict.fromkeys(m.destination for m in evaluation.matches if m.destination))
        return OutflowAlert(
            watch_address=self.watch_address,
            matched_lines=evaluation.matches[:limit],
            destination_preview=destinations[:limit],
            distinct_destinations=len(destinations),
            window_size=evaluation.window_size,
            in_range_count=evaluation.in_range_count,
            match_count=evaluation.match_count,
            min_sol=self.settings.min_sol,
            max_sol=self.settings.max_sol,
            required_match=self.settings.required_match,
        )

    async def trigger(self, evaluation: WindowEvaluation):
        """
        Dispatch one alert for the window, then start a new window.

        The alert key is persisted before dispatch, so a restart after a
        partial dispatch never alerts the same window again.
        """
        alert = self.build_alert(evaluation)
        self.window.mark_alerted(evaluation.alert_key)
        await self.store.save_state(self.state)

        alerts_logger.info(
            f"Trigger: {evaluation.match_count}/{evaluation.window_size} five-digit outflows from "
            f"{format_address(self.watch_address)} ({alert.distinct_destinations} destinations)"
        )
        try:
            await self.notifier.notify_alert(alert)
            alerts_logger.info("Alert sent")
        except DeliveryError as e:
            alerts_logger.error(f"Alert delivery failed, not retried: {e}")

        anchor = self.state.anchor_signature
        try:
            newest = await self.cursor.fetch_newest()
            if newest:
                anchor = newest
        except TransientFetchError as e:
            logger.warning(f"Could not refresh anchor after trigger, keeping {anchor}: {e}")

        self.window.reset(anchor)
        logger.info(f"Reset window and moved anchor to {anchor}")

    async def run_forever(self, max_cycles: Optional[int] = None):
        """
        Poll until cancelled (or ``max_cycles`` cycles have run).

        Cycle failures are logged here and retried after the poll interval.
        """
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            try:
                await self.run_cycle()
            except TransientFetchError as e:
                logger.warning(f"Cycle skipped: {e}")
            except WatcherError as e:
                logger.error(f"Cycle failed: {e}")
            except Exception as e:
                logger.error(f"Loop error: {e}", exc_info=True)

            cycles += 1
            if max_cycles is None or cycles < max_cycles:
                await self._sleep(self.settings.poll_seconds)
