"""
Fixture data refresh module.

Pulls a fixture's events and statistics, recomputes its points and replaces
the stored match-stat rows.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from database.supabase_client import SupabaseClient
from football_api.client import APIFootballClient, APIFootballMalformedError
from utils.points_calculator import FixtureMeta, FixturePoints, compute_fixture_points

logger = logging.getLogger(__name__)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def fixture_status(item: Dict[str, Any]) -> Tuple[Optional[str], int]:
    """Return (status short code, elapsed minutes) from a provider fixture item."""
    status = (item.get("fixture") or {}).get("status") or {}
    return status.get("short"), _optional_int(status.get("elapsed")) or 0


def parse_fixture_meta(item: Dict[str, Any]) -> FixtureMeta:
    """
    Build FixtureMeta from a ``/fixtures`` response item.

    Raises:
        APIFootballMalformedError: When fixture or team ids are missing
    """
    fixture = item.get("fixture") or {}
    teams = item.get("teams") or {}
    goals = item.get("goals") or {}
    penalty = (item.get("score") or {}).get("penalty") or {}

    fixture_id = _optional_int(fixture.get("id"))
    home_id = _optional_int((teams.get("home") or {}).get("id"))
    away_id = _optional_int((teams.get("away") or {}).get("id"))
    if fixture_id is None or home_id is None or away_id is None:
        raise APIFootballMalformedError(
            "Fixture item missing fixture or team ids",
            endpoint="/fixtures",
            params={"id": fixture_id},
        )

    status, elapsed = fixture_status(item)
    return FixtureMeta(
        fixture_id=fixture_id,
        home_team_id=home_id,
        away_team_id=away_id,
        home_goals=_optional_int(goals.get("home")) or 0,
        away_goals=_optional_int(goals.get("away")) or 0,
        home_penalties=_optional_int(penalty.get("home")),
        away_penalties=_optional_int(penalty.get("away")),
        status=status,
        elapsed=elapsed,
    )


def _validate_events(fixture_id: int, events: List[Any]):
    for event in events:
        if not isinstance(event, dict) or not event.get("type"):
            raise APIFootballMalformedError(
                "Event item missing type",
                endpoint="/fixtures/events",
                params={"fixture": fixture_id},
            )


class FixtureDataRefresher:
    """Handles per-fixture points refresh."""

    def __init__(
        self,
        api_client: APIFootballClient,
        db_client: SupabaseClient
    ):
        self.api_client = api_client
        self.db_client = db_client

    async def refresh_fixture(self, fixture_item: Dict[str, Any]) -> FixturePoints:
        """
        Recompute and store points for one fixture.

        Args:
            fixture_item: Provider ``/fixtures`` item carrying status, teams and score

        Returns:
            The freshly computed FixturePoints

        Raises:
            APIFootballError: Any upstream failure; nothing is written in that case
        """
        meta = parse_fixture_meta(fixture_item)

        events = await self.api_client.get_fixture_events(meta.fixture_id)
        statistics = await self.api_client.get_fixture_statistics(meta.fixture_id)
        _validate_events(meta.fixture_id, events)

        points = compute_fixture_points(events, meta)

        self.db_client.replace_match_stats(meta.fixture_id, points.match_stat_rows())
        self.db_client.replace_team_match_stats(meta.fixture_id, points.team_match_stat_rows())
        self.db_client.update_fixture_live_state(
            meta.fixture_id,
            meta.status,
            meta.elapsed,
            home_goals=meta.home_goals,
            away_goals=meta.away_goals,
            statistics=statistics,
        )

        logger.info("Refreshed fixture points", extra={
            "fixture_id": meta.fixture_id,
            "status": meta.status,
            "elapsed": meta.elapsed,
            "events_count": len(events),
            "players_scored": len(points.players),
        })
        return points
