#!/usr/bin/env python3
"""
Manually recalculate player pool stage scores for a competition/season.

Useful after stat rows were corrected or fixtures were re-seeded with a
different stage label.

Usage:
    python3 scripts/recalculate_pool_scores.py 1 2022
    python3 scripts/recalculate_pool_scores.py 1 2022 --stage "Final"
"""

import argparse
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
from database.supabase_client import SupabaseClient
from utils.logger import setup_logging
from utils.points_calculator import PointsCalculator


def main():
    parser = argparse.ArgumentParser(description="Recalculate pool stage scores")
    parser.add_argument("competition_id", type=int, help="Provider league id")
    parser.add_argument("season", type=int, help="Season start year")
    parser.add_argument("--stage", action="append", help="Stage label (repeatable, default: all)")
    args = parser.parse_args()

    config = Config()
    setup_logging(config)
    calculator = PointsCalculator(SupabaseClient(config))

    stages = set(args.stage) if args.stage else None
    stage_totals = calculator.get_stage_totals(args.competition_id, args.season, stages)
    if not stage_totals:
        print(f"No seeded fixtures for competition {args.competition_id}, season {args.season}")
        return

    for stage, totals in sorted(stage_totals.items()):
        print(f"{stage}: {len(totals)} entries, {sum(totals.values())} points")

    written = calculator.recalculate_pool_scores(args.competition_id, args.season, stages)
    print(f"Updated {written} pool(s)")


if __name__ == "__main__":
    main()
