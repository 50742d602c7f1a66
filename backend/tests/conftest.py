# Ensure backend/src is at sys.path[0] when pytest runs (from repo root or from backend dir)
import asyncio
import copy
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

_tests_dir = Path(__file__).resolve().parent
_src = str(_tests_dir.parent / "src")
if sys.path[0:1] != [_src]:
    sys.path.insert(0, _src)

import httpx
import pytest

from config import Config
from football_api.client import APIFootballClient
from utils.clock import Clock


class FakeClock(Clock):
    """Clock whose time only moves when something sleeps or a test advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float):
        self.now += seconds


class InMemoryDB:
    """Stand-in for SupabaseClient keeping tables in dicts."""

    def __init__(self):
        self.fixtures: Dict[int, Dict[str, Any]] = {}
        self.match_stats: Dict[tuple, Dict[str, Any]] = {}
        self.team_match_stats: Dict[tuple, Dict[str, Any]] = {}
        self.player_pools: Dict[int, Dict[str, Any]] = {}
        self.finalize_calls: List[int] = []

    def seed_fixture(self, fixture_id, competition_id=1, season=2022, stage="Group Stage - 1", **extra):
        self.fixtures[fixture_id] = {
            "id": fixture_id,
            "competition_id": competition_id,
            "season": season,
            "stage": stage,
            "status": extra.pop("status", "NS"),
            "elapsed": extra.pop("elapsed", None),
            "finalized": extra.pop("finalized", False),
            **extra,
        }

    def seed_pool(self, pool_id, entries, competition_id=1, season=2022, league_id=None):
        self.player_pools[pool_id] = {
            "id": pool_id,
            "league_id": league_id or pool_id,
            "competition_id": competition_id,
            "season": season,
            "entries": entries,
        }

    def get_fixtures(self, competition_id=None, season=None, stage=None, finalized=None, fixture_ids=None):
        rows = []
        for row in self.fixtures.values():
            if competition_id is not None and row["competition_id"] != competition_id:
                continue
            if season is not None and row["season"] != season:
                continue
            if stage is not None and row["stage"] != stage:
                continue
            if finalized is not None and row["finalized"] != finalized:
                continue
            if fixture_ids is not None and row["id"] not in fixture_ids:
                continue
            rows.append(copy.deepcopy(row))
        return rows

    def upsert_fixture(self, fixture_data):
        self.fixtures.setdefault(fixture_data["id"], {}).update(fixture_data)

    def update_fixture_live_state(self, fixture_id, status, elapsed, home_goals=None, away_goals=None, statistics=None):
        row = self.fixtures[fixture_id]
        row["status"] = status
        row["elapsed"] = elapsed
        if home_goals is not None:
            row["home_goals"] = home_goals
        if away_goals is not None:
            row["away_goals"] = away_goals
        if statistics is not None:
            row["statistics"] = statistics

    def mark_fixture_finalized(self, fixture_id):
        self.finalize_calls.append(fixture_id)
        self.fixtures[fixture_id]["finalized"] = True

    def _replace(self, table, key_column, fixture_id, rows):
        for key in [k for k in table if k[0] == fixture_id]:
            del table[key]
        for row in rows:
            table[(fixture_id, row[key_column])] = copy.deepcopy(row)

    def replace_match_stats(self, fixture_id, rows):
        self._replace(self.match_stats, "player_id", fixture_id, rows)

    def replace_team_match_stats(self, fixture_id, rows):
        self._replace(self.team_match_stats, "team_id", fixture_id, rows)

    def get_match_stats(self, fixture_ids):
        ids = set(fixture_ids)
        return [copy.deepcopy(r) for (fid, _), r in self.match_stats.items() if fid in ids]

    def get_team_match_stats(self, fixture_ids):
        ids = set(fixture_ids)
        return [copy.deepcopy(r) for (fid, _), r in self.team_match_stats.items() if fid in ids]

    def get_player_pools(self, competition_id, season):
        return [
            copy.deepcopy(p) for p in self.player_pools.values()
            if p["competition_id"] == competition_id and p["season"] == season
        ]

    def update_player_pool_entries(self, pool_id, entries):
        self.player_pools[pool_id]["entries"] = copy.deepcopy(entries)


def make_fixture_item(
    fixture_id: int,
    status: str,
    elapsed: Optional[int] = None,
    home_id: int = 10,
    away_id: int = 20,
    home_goals: Optional[int] = 0,
    away_goals: Optional[int] = 0,
    home_penalties: Optional[int] = None,
    away_penalties: Optional[int] = None,
    league_id: int = 1,
    season: int = 2022,
) -> Dict[str, Any]:
    """Provider /fixtures response item."""
    return {
        "fixture": {"id": fixture_id, "status": {"short": status, "elapsed": elapsed}},
        "league": {"id": league_id, "season": season},
        "teams": {"home": {"id": home_id}, "away": {"id": away_id}},
        "goals": {"home": home_goals, "away": away_goals},
        "score": {"penalty": {"home": home_penalties, "away": away_penalties}},
    }


def goal(player_id, team_id, detail="Normal Goal", assist_id=None, comments=None, elapsed=10):
    return {
        "time": {"elapsed": elapsed, "extra": None},
        "team": {"id": team_id},
        "player": {"id": player_id},
        "assist": {"id": assist_id},
        "type": "Goal",
        "detail": detail,
        "comments": comments,
    }


def card(player_id, team_id, detail="Red Card", elapsed=50):
    return {
        "time": {"elapsed": elapsed, "extra": None},
        "team": {"id": team_id},
        "player": {"id": player_id},
        "assist": {"id": None},
        "type": "Card",
        "detail": detail,
        "comments": None,
    }


class ProviderStub:
    """Routes MockTransport requests to canned API-Football payloads."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.live: Dict[tuple, List[Dict[str, Any]]] = {}
        self.fixtures_by_id: Dict[int, Dict[str, Any]] = {}
        self.events: Dict[int, List[Dict[str, Any]]] = {}
        self.statistics: Dict[int, List[Dict[str, Any]]] = {}
        self.squads: Dict[int, List[Dict[str, Any]]] = {}
        # (path, fixture id or None) -> httpx.Response factory
        self.overrides: Dict[tuple, Any] = {}
        self.requests: List[httpx.Request] = []
        self.dispatch_times: List[float] = []

    def calls_to(self, path: str, **params) -> List[httpx.Request]:
        matched = []
        for request in self.requests:
            if request.url.path != path:
                continue
            if all(request.url.params.get(k) == str(v) for k, v in params.items()):
                matched.append(request)
        return matched

    def _ok(self, response: List[Dict[str, Any]]) -> httpx.Response:
        return httpx.Response(200, json={"errors": [], "results": len(response), "response": response})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.clock is not None:
            self.dispatch_times.append(self.clock.monotonic())
        path = request.url.path
        params = request.url.params

        fixture_key = params.get("fixture") or params.get("id")
        override = self.overrides.get((path, int(fixture_key) if fixture_key else None))
        if override is None:
            override = self.overrides.get((path, None))
        if override is not None:
            return override(request)

        if path == "/fixtures" and params.get("live") == "all":
            return self._ok(self.live.get((int(params["league"]), int(params["season"])), []))
        if path == "/fixtures" and "id" in params:
            item = self.fixtures_by_id.get(int(params["id"]))
            return self._ok([item] if item else [])
        if path == "/fixtures/events":
            return self._ok(self.events.get(int(params["fixture"]), []))
        if path == "/fixtures/statistics":
            return self._ok(self.statistics.get(int(params["fixture"]), []))
        if path == "/players/squads":
            return self._ok(self.squads.get(int(params["team"]), []))
        return self._ok([])


def make_config(**overrides) -> Config:
    values = {
        "api_football_key": "test-key",
        "api_football_base_url": "https://provider.test",
        "require_database": False,
        "min_request_interval": 0.0,
        "max_requests_per_minute": 10000,
        "rate_limit_retry_after": 60,
        "squad_cache_ttl": 43200,
        "poll_interval": 60,
        "tick_timeout": 30,
    }
    values.update(overrides)
    return Config(**values)


def make_api_client(config: Config, clock: FakeClock, provider: ProviderStub) -> APIFootballClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    return APIFootballClient(config, clock=clock, http_client=http_client)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider(clock):
    return ProviderStub(clock)


@pytest.fixture
def db():
    return InMemoryDB()
