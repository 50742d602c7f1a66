"""
Backend API: provider pass-through for the draft UI plus read access to computed points.

Provider calls share the process-wide API-Football client so they count against
the same dispatch queue as the poller would in a combined deployment.
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Config
from database.supabase_client import SupabaseClient
from football_api.client import APIFootballClient, APIFootballError, UpstreamErrorKind

# Lazy init so we don't require Supabase or a provider key in tests
_db: SupabaseClient | None = None
_api_client: APIFootballClient | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    global _api_client
    if _api_client is not None:
        await _api_client.close()
        _api_client = None


app = FastAPI(title="Draft League Scoring API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db() -> SupabaseClient:
    global _db
    if _db is None:
        _db = SupabaseClient(Config())
    return _db


def get_api_client() -> APIFootballClient:
    global _api_client
    if _api_client is None:
        _api_client = APIFootballClient(Config(require_database=False))
    return _api_client


@app.exception_handler(APIFootballError)
async def upstream_error_handler(request: Request, exc: APIFootballError):
    """Surface the structured upstream error so callers can back off."""
    headers: Dict[str, str] = {}
    if exc.kind is UpstreamErrorKind.RATE_LIMITED:
        status_code = 429
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(exc.retry_after_seconds)
    else:
        status_code = 502
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()}, headers=headers)


@app.get("/health")
def health():
    return {"status": "ok"}


# Provider pass-through

@app.get("/api/football/players")
async def get_players(
    league: int = Query(...),
    season: int = Query(...),
    page: int = Query(1, ge=1),
    client: APIFootballClient = Depends(get_api_client),
):
    return await client.call("/players", {"league": league, "season": season, "page": page}, label="players")


@app.get("/api/football/players/squads")
async def get_squad(
    team: int = Query(...),
    client: APIFootballClient = Depends(get_api_client),
):
    """Squad roster, served from the 12h response cache when fresh."""
    return await client.get_squad(team)


@app.get("/api/football/fixtures")
async def get_fixtures(
    league: int = Query(...),
    season: int = Query(...),
    client: APIFootballClient = Depends(get_api_client),
):
    return await client.call("/fixtures", {"league": league, "season": season}, label="fixtures")


@app.get("/api/football/fixture/{fixture_id}")
async def get_fixture_detail(
    fixture_id: int,
    client: APIFootballClient = Depends(get_api_client),
):
    """Events and statistics for one fixture (two queued provider calls)."""
    events = await client.get_fixture_events(fixture_id)
    stats = await client.get_fixture_statistics(fixture_id)
    return {"events": events, "stats": stats}


@app.get("/api/football/teams")
async def get_teams(
    league: int = Query(...),
    season: int = Query(...),
    client: APIFootballClient = Depends(get_api_client),
):
    return await client.call("/teams", {"league": league, "season": season}, label="teams")


@app.get("/api/football/standings")
async def get_standings(
    league: int = Query(...),
    season: int = Query(...),
    client: APIFootballClient = Depends(get_api_client),
):
    return await client.call("/standings", {"league": league, "season": season}, label="standings")


# Computed points

@app.get("/api/v1/fixtures/{fixture_id}/points")
def get_fixture_points(fixture_id: int, db: SupabaseClient = Depends(get_db)):
    """Stored player and team-defense rows for one fixture."""
    fixtures = db.get_fixtures(fixture_ids=[fixture_id])
    if not fixtures:
        raise HTTPException(status_code=404, detail="Fixture not tracked")
    fixture: Dict[str, Any] = fixtures[0]
    players = sorted(db.get_match_stats([fixture_id]), key=lambda r: (-(r.get("points") or 0), r["player_id"]))
    teams = sorted(db.get_team_match_stats([fixture_id]), key=lambda r: r["team_id"])
    return {
        "fixture": fixture,
        "players": players,
        "teams": teams,
    }


@app.get("/api/v1/pools/{competition_id}/{season}")
def get_pools(
    competition_id: int,
    season: int,
    stage: Optional[str] = Query(None, description="Only return this stage's score per entry"),
    db: SupabaseClient = Depends(get_db),
):
    pools = db.get_player_pools(competition_id, season)
    if stage is None:
        return {"pools": pools}
    trimmed = []
    for pool in pools:
        entries = [
            {**entry, "scores": {stage: (entry.get("scores") or {}).get(stage, 0)}}
            for entry in pool.get("entries") or []
        ]
        trimmed.append({**pool, "entries": entries})
    return {"pools": trimmed}
