"""
Main entry point for the StackRox provider.

This module initializes and starts the controller with the registered kinds.
"""

import asyncio
import logging
import signal
from typing import Optional

from config import get_config
from controller import Controller
from db import DatabaseManager
from plugins.registry import get_registry, register_builtin_plugins

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that wires the store, the registry and the controller."""

    def __init__(self):
        self.config = get_config()
        self.db: Optional[DatabaseManager] = None
        self.controller: Optional[Controller] = None
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing StackRox provider")

        # Register built-in kinds and discover installed ones
        register_builtin_plugins()
        registry = get_registry()

        # Initialize database
        db_config = self.config.database
        ctrl_config = self.config.controller
        self.db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
            backoff_base_delay=ctrl_config.backoff_base_delay,
            backoff_max_delay=ctrl_config.backoff_max_delay,
            backoff_jitter_factor=ctrl_config.backoff_jitter_factor,
        )
        await self.db.connect()
        await self.db.initialize_schema()
        logger.info("Database initialized")

        self.controller = Controller(
            store=self.db,
            registry=registry,
            config=self.config,
        )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        self.running = True
        if not self.controller:
            await self.initialize()

        if not self.running:
            # Stopped while initializing
            return
        try:
            await self.controller.start()
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Ask the controller to finish its current cycle and exit."""
        logger.info("Stopping StackRox provider")
        self.running = False

        if self.controller:
            await self.controller.stop()

    async def shutdown(self):
        """Release the database pool once the controller has exited."""
        if self.db:
            await self.db.close()
            self.db = None

        logger.info("StackRox provider stopped")


async def main():
    """Main entry point."""
    setup_logging(get_config().logging.log_level)
    app = Application()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.shutdown()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
