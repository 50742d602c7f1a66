"""
Supabase client for database operations.

Tables touched by the scoring pipeline:
- fixtures: seeded externally, keyed by provider fixture id
- match_stats: one row per (fixture_id, player_id)
- team_match_stats: one row per (fixture_id, team_id)
- player_pools: one row per league, entries carry a per-stage scores map
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from supabase import create_client, Client

from config import Config

logger = logging.getLogger(__name__)

FIXTURE_COLUMNS = [
    "id", "competition_id", "season", "stage", "status", "elapsed", "finalized",
    "home_team_id", "away_team_id",
]
STAT_COLUMNS = ["fixture_id", "points", "breakdown"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseClient:
    """Client for interacting with Supabase database."""

    def __init__(self, config: Config):
        self.config = config
        self.client: Optional[Client] = None
        self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not self.config.supabase_key:
            raise ValueError("Supabase URL and key are required")

        # Service key bypasses row level security for the background writer
        key = self.config.supabase_service_key or self.config.supabase_key
        self.client = create_client(self.config.supabase_url, key)

        logger.info("Initialized Supabase client", extra={
            "url": self.config.supabase_url,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    def _select_columns(self, columns: List[str]) -> str:
        """Format column list for SELECT statement."""
        return ", ".join(columns)

    # Fixtures

    def get_fixtures(
        self,
        competition_id: Optional[int] = None,
        season: Optional[int] = None,
        stage: Optional[str] = None,
        finalized: Optional[bool] = None,
        fixture_ids: Optional[List[int]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get seeded fixtures with optional filtering.

        Args:
            competition_id: Filter by competition (provider league id)
            season: Filter by season start year
            stage: Filter by stage label
            finalized: Filter by finalized flag
            fixture_ids: Restrict to these fixture ids

        Returns:
            List of fixture dictionaries
        """
        query = self.client.table("fixtures").select(self._select_columns(FIXTURE_COLUMNS))

        if competition_id is not None:
            query = query.eq("competition_id", competition_id)
        if season is not None:
            query = query.eq("season", season)
        if stage is not None:
            query = query.eq("stage", stage)
        if finalized is not None:
            query = query.eq("finalized", finalized)
        if fixture_ids is not None:
            if not fixture_ids:
                return []
            query = query.in_("id", fixture_ids)

        result = query.execute()
        return result.data or []

    def upsert_fixture(self, fixture_data: Dict[str, Any]):
        """
        Upsert a seeded fixture.

        Args:
            fixture_data: Must include id, competition_id, season, stage
        """
        result = self.client.table("fixtures").upsert(
            {**fixture_data, "updated_at": _now_iso()},
            on_conflict="id"
        ).execute()

        return result.data

    def update_fixture_live_state(
        self,
        fixture_id: int,
        status: Optional[str],
        elapsed: Optional[int],
        home_goals: Optional[int] = None,
        away_goals: Optional[int] = None,
        statistics: Optional[List[Dict[str, Any]]] = None,
    ):
        """Record the provider's latest status, clock and score for a fixture."""
        data: Dict[str, Any] = {
            "status": status,
            "elapsed": elapsed,
            "updated_at": _now_iso(),
        }
        if home_goals is not None:
            data["home_goals"] = home_goals
        if away_goals is not None:
            data["away_goals"] = away_goals
        if statistics is not None:
            data["statistics"] = statistics
        self.client.table("fixtures").update(data).eq("id", fixture_id).execute()

    def mark_fixture_finalized(self, fixture_id: int):
        """Set finalized = true. Finalized fixtures are never reopened."""
        self.client.table("fixtures").update(
            {"finalized": True, "updated_at": _now_iso()}
        ).eq("id", fixture_id).execute()
        logger.info("Fixture finalized", extra={"fixture_id": fixture_id})

    # Match stats

    def _replace_rows(
        self,
        table: str,
        key_column: str,
        fixture_id: int,
        rows: List[Dict[str, Any]],
    ):
        """
        Make the stored rows for a fixture equal to ``rows``.

        Rows are written whole on their natural key, then rows of the fixture
        that the new computation no longer contains are removed.
        """
        stamped = [{**row, "updated_at": _now_iso()} for row in rows]
        if stamped:
            self.client.table(table).upsert(
                stamped,
                on_conflict=f"fixture_id,{key_column}"
            ).execute()

        keep_ids = [row[key_column] for row in rows]
        stale = self.client.table(table).delete().eq("fixture_id", fixture_id)
        if keep_ids:
            stale = stale.not_.in_(key_column, keep_ids)
        stale.execute()

    def replace_match_stats(self, fixture_id: int, rows: List[Dict[str, Any]]):
        """Replace every player row for a fixture."""
        self._replace_rows("match_stats", "player_id", fixture_id, rows)

    def replace_team_match_stats(self, fixture_id: int, rows: List[Dict[str, Any]]):
        """Replace every team-defense row for a fixture."""
        self._replace_rows("team_match_stats", "team_id", fixture_id, rows)

    def get_match_stats(self, fixture_ids: Iterable[int]) -> List[Dict[str, Any]]:
        ids = list(fixture_ids)
        if not ids:
            return []
        result = self.client.table("match_stats").select(
            self._select_columns(STAT_COLUMNS + ["player_id"])
        ).in_("fixture_id", ids).execute()
        return result.data or []

    def get_team_match_stats(self, fixture_ids: Iterable[int]) -> List[Dict[str, Any]]:
        ids = list(fixture_ids)
        if not ids:
            return []
        result = self.client.table("team_match_stats").select(
            self._select_columns(STAT_COLUMNS + ["team_id"])
        ).in_("fixture_id", ids).execute()
        return result.data or []

    # Player pools

    def get_player_pools(self, competition_id: int, season: int) -> List[Dict[str, Any]]:
        """Get every league's player pool that follows a competition/season."""
        result = self.client.table("player_pools").select(
            "id, league_id, competition_id, season, entries"
        ).eq("competition_id", competition_id).eq("season", season).execute()
        return result.data or []

    def update_player_pool_entries(self, pool_id: int, entries: List[Dict[str, Any]]):
        """Replace a pool's entries list."""
        self.client.table("player_pools").update(
            {"entries": entries, "updated_at": _now_iso()}
        ).eq("id", pool_id).execute()
