"""
Database layer using aiosqlite for Outflow Watcher.
Persists the watcher state (cursor, outflow window, last alert key).
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite
from pydantic import ValidationError

from core.errors import PersistenceError
from core.models import MonitorState, OutflowRecord, OutflowTransfer

logger = logging.getLogger(__name__)


class Database:
    """Async state store using SQLite. Single writer."""

    def __init__(self, db_path: str):
        """Initialize database with path."""
        self.db_path = db_path
        self.conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """
        Connect to the database and create tables if needed.

        A file that is not a database is moved aside and replaced with an
        empty one, which sends the watcher back through warm-up. If the
        path cannot be opened at all the store stays disconnected: loads
        return the empty state and saves report False.
        """
        try:
            await self._open()
        except aiosqlite.OperationalError as e:
            await self._discard()
            logger.error(f"State database unavailable ({e}); running without persistence")
            return
        except aiosqlite.DatabaseError as e:
            await self._discard()
            try:
                backup = self._quarantine()
                logger.error(f"State database unreadable ({e}), moved to {backup}; starting empty")
                await self._open()
            except (aiosqlite.Error, OSError) as retry_error:
                await self._discard()
                logger.error(f"State database unavailable ({retry_error}); running without persistence")
                return
        logger.info(f"Database connected: {self.db_path}")

    async def _open(self):
        self.conn = await aiosqlite.connect(self.db_path)
        self.conn.row_factory = aiosqlite.Row
        await self._create_tables()

    async def _discard(self):
        """Drop a half-open connection."""
        if self.conn is not None:
            try:
                await self.conn.close()
            except aiosqlite.Error as e:
                logger.debug(f"Closing failed connection: {e}")
            self.conn = None

    async def close(self):
        """Close database connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    def _quarantine(self) -> Path:
        path = Path(self.db_path)
        backup = path.with_name(f"{path.name}.corrupt-{datetime.now().strftime('%Y%m%d%H%M%S')}")
        path.replace(backup)
        return backup

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS monitor_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                watch_address TEXT,
                anchor_signature TEXT,
                last_alert_key TEXT,
                updated_at TEXT NOT NULL
            )
        """)

        # position 0 is the newest outflow
        await self.conn.execute("""
            CREATE TABLE IF NOT EXISTS outflows (
                position INTEGER PRIMARY KEY,
                signature TEXT NOT NULL,
                out_lamports INTEGER NOT NULL,
                outflow_sol4 TEXT NOT NULL,
                transfers_json TEXT NOT NULL,
                observed_at TEXT NOT NULL
            )
        """)

        await self.conn.commit()

    async def _read_state(self) -> Optional[MonitorState]:
        """Read the stored state. Raises PersistenceError on any failure."""
        if self.conn is None:
            raise PersistenceError("read", "database not connected")

        try:
            cursor = await self.conn.execute("SELECT * FROM monitor_state WHERE id = 1")
            row = await cursor.fetchone()
            if row is None:
                return None

            cursor = await self.conn.execute("SELECT * FROM outflows ORDER BY position ASC")
            rows = await cursor.fetchall()

            outflows = [
                OutflowRecord(
                    signature=r['signature'],
                    out_lamports=r['out_lamports'],
                    outflow_sol4=r['outflow_sol4'],
                    transfers=[OutflowTransfer(**t) for t in json.loads(r['transfers_json'])],
                    observed_at=datetime.fromisoformat(r['observed_at']),
                )
                for r in rows
            ]

            return MonitorState(
                watch_address=row['watch_address'],
                anchor_signature=row['anchor_signature'],
                outflows=outflows,
                last_alert_key=row['last_alert_key'],
            )
        except (aiosqlite.Error, ValueError, TypeError, ValidationError) as e:
            raise PersistenceError("read", str(e)) from e

    async def load_state(self, watch_address: str) -> MonitorState:
        """
        Load the persisted state for ``watch_address``.

        Falls back to an empty state (null cursor, so warm-up runs again)
        when nothing is stored, the store is unreadable, or the stored
        state belongs to another address.
        """
        default = MonitorState(watch_address=watch_address)
        try:
            state = await self._read_state()
        except PersistenceError as e:
            logger.error(f"{e}; falling back to empty state")
            return default

        if state is None:
            logger.info("No stored state found")
            return default

        if state.watch_address != watch_address:
            logger.warning(
                f"Stored state belongs to {state.watch_address}, not {watch_address}; starting fresh"
            )
            return default

        return state

    async def save_state(self, state: MonitorState) -> bool:
        """
        Persist the full state in one transaction.

        Returns False (and logs) on failure; the in-memory state stays
        authoritative until a later write succeeds.
        """
        try:
            if self.conn is None:
                raise PersistenceError("write", "database not connected")

            await self.conn.execute("DELETE FROM outflows")
            await self.conn.executemany("""
                INSERT INTO outflows (position, signature, out_lamports, outflow_sol4, transfers_json, observed_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [
                (
                    position,
                    record.signature,
                    record.out_lamports,
                    record.outflow_sol4,
                    json.dumps([t.model_dump(mode="json") for t in record.transfers]),
                    record.observed_at.isoformat(),
                )
                for position, record in enumerate(state.outflows)
            ])
            await self.conn.execute("""
                INSERT INTO monitor_state (id, watch_address, anchor_signature, last_alert_key, updated_at)
                VALUES (1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    watch_address=excluded.watch_address,
                    anchor_signature=excluded.anchor_signature,
                    last_alert_key=excluded.last_alert_key,
                    updated_at=excluded.updated_at
            """, (
                state.watch_address,
                state.anchor_signature,
                state.last_alert_key,
                datetime.now(timezone.utc).isoformat(),
            ))
            await self.conn.commit()
            return True
        except PersistenceError as e:
            logger.error(str(e))
            return False
        except aiosqlite.Error as e:
            logger.error(f"state write failed: {e}")
            try:
                await self.conn.rollback()
            except aiosqlite.Error:
                logger.debug("Rollback after failed write also failed")
            return False
