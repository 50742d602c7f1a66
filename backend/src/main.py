#!/usr/bin/env python3
"""
Live Scoring Service - Main Entry Point

Polls the football data provider for in-play fixtures of every seeded
competition and keeps match stats and player pool scores current.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from refresh.orchestrator import FixturePollOrchestrator
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class LiveScoringService:
    """Main service class for the fixture poll loop."""

    def __init__(self, config: Config):
        self.config = config
        self.orchestrator = None
        self.running = False
        self._poll_task = None

    async def start(self):
        """Start the poll service."""
        logger.info("Starting Live Scoring Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment
        })

        try:
            self.orchestrator = FixturePollOrchestrator(self.config)
            await self.orchestrator.initialize()

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._handle_shutdown, sig)

            self.running = True
            self._poll_task = asyncio.create_task(self.orchestrator.run())
            await self._poll_task

        except Exception as e:
            logger.error("Fatal error in live scoring service", extra={
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise
        finally:
            if self.orchestrator:
                await self.orchestrator.shutdown()

    def _handle_shutdown(self, signum):
        """Handle shutdown signals gracefully."""
        logger.info("Received shutdown signal", extra={"signal": signum})
        self.running = False
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()


async def main():
    """Main entry point."""
    config = Config()
    setup_logging(config)

    service = LiveScoringService(config)
    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
