#!/usr/bin/env python3
"""
Serve the scoring API.

Routes under /api/football pass through to API-Football (squads via the 12h
cache); routes under /api/v1 read stored fixture points and pool scores.

Usage:
    python backend/scripts/run_api.py [--host HOST] [--port PORT] [--no-reload]
"""
import argparse
import os
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

import uvicorn
from dotenv import load_dotenv

load_dotenv(backend_dir / ".env")


def main():
    parser = argparse.ArgumentParser(description="Run the draft-league scoring API")
    parser.add_argument("--host", default=os.getenv("API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "8000")))
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable auto-reload (on by default when ENVIRONMENT=development)",
    )
    args = parser.parse_args()

    reload = os.getenv("ENVIRONMENT", "development") == "development" and not args.no_reload
    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=reload,
        app_dir=str(src_dir),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
