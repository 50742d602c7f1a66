#!/usr/bin/env python3
"""
Run a single fixture poll tick.

This will:
1. Load seeded, unfinalized fixtures
2. Ask the provider which of them are live (or just finished)
3. Recompute points for eligible fixtures and finalize finished ones
4. Recalculate pool scores for every touched competition/season

Usage:
    python3 scripts/poll_once.py
"""

import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from refresh.orchestrator import FixturePollOrchestrator
from utils.logger import setup_logging


async def poll_once():
    """Run a single poll tick."""
    config = Config()
    setup_logging(config)

    orchestrator = FixturePollOrchestrator(config)

    try:
        await orchestrator.initialize()
        summary = await orchestrator.tick()

        if summary is None:
            print("Tick skipped (backoff or timeout), see logs")
            sys.exit(1)

        print(f"Processed: {summary.processed}")
        print(f"Finalized: {summary.finalized}")
        print(f"Skipped:   {summary.skipped} (+{summary.untracked} untracked)")
        print(f"Failed:    {summary.failed}")
        for competition_id, season in summary.pools_recalculated:
            print(f"Pools recalculated: competition {competition_id}, season {season}")

    finally:
        await orchestrator.shutdown()


if __name__ == "__main__":
    asyncio.run(poll_once())
