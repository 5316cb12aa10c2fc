"""
Outflow Watcher - Main Entry Point
Watches one Solana account for five-digit SOL outflow patterns and alerts.
"""
import asyncio
import logging
import sys
from typing import Optional

from aiogram import Bot

from config import Settings, get_settings, ensure_data_directory
from core.database import Database
from core.errors import ConfigError
from core.monitor import OutflowMonitor
from core.solana_rpc import SolanaRPCClient
from bot.notifier import Notifier
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


class OutflowWatcherBot:
    """Main application orchestrating all components."""

    def __init__(self, settings: Settings):
        """Initialize application components."""
        self.settings = settings

        self.db: Optional[Database] = None
        self.rpc: Optional[SolanaRPCClient] = None
        self.notifier: Optional[Notifier] = None
        self.monitor: Optional[OutflowMonitor] = None

    async def setup(self):
        """Setup all components."""
        logger.info("Setting up Outflow Watcher...")

        # Ensure data directory exists
        ensure_data_directory(self.settings)

        # Initialize database and load state
        self.db = Database(self.settings.database_path)
        await self.db.connect()
        state = await self.db.load_state(self.settings.watch_address)

        self.rpc = SolanaRPCClient(
            rpc_url=self.settings.rpc_url,
            commitment=self.settings.commitment,
            timeout=self.settings.rpc_timeout,
        )

        bot = Bot(token=self.settings.bot_token) if self.settings.bot_token else None
        self.notifier = Notifier(bot, settings=self.settings)

        self.monitor = OutflowMonitor(
            settings=self.settings,
            rpc=self.rpc,
            store=self.db,
            notifier=self.notifier,
            state=state,
        )

        logger.info(f"WATCH: {self.settings.watch_address}")
        logger.info(
            f"Config: window={self.settings.window_outflows}, required={self.settings.required_match}, "
            f"range=[{self.settings.min_sol}, {self.settings.max_sol}] SOL, "
            f"policy={self.settings.digit_policy.value}, "
            f"fresh_gate={self.settings.fresh_destination_gate}, poll={self.settings.poll_seconds}s"
        )
        logger.info(f"Alert destinations: {', '.join(self.notifier.destinations)}")
        logger.info("Setup complete!")

    async def start(self):
        """Run warm-up and the polling loop."""
        logger.info("Starting Outflow Watcher...")
        try:
            try:
                await self.monitor.prepare()
            except Exception as e:
                # Warm-up is retried by the first cycle
                logger.error(f"Warm-up failed, will retry next cycle: {e}")
            await self.monitor.run_forever()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down Outflow Watcher...")

        if self.rpc:
            await self.rpc.close()
        if self.notifier:
            await self.notifier.close()
        if self.db:
            await self.db.close()

        logger.info("Shutdown complete")


async def main():
    """Main entry point."""
    try:
        settings = get_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Fatal: {e}")
        sys.exit(1)

    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)

    app = OutflowWatcherBot(settings)

    try:
        await app.setup()
        await app.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Watcher stopped by user")
