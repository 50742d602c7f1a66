"""
Points calculation utilities.

Turns a fixture's raw provider events into fantasy points for players and
team-defense entries, and rolls per-fixture rows up into the per-stage scores
of every player pool that follows the competition.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from database.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

# Scoring rules
GOAL_POINTS = 3
PENALTY_GOAL_POINTS = 2
PENALTY_MISS_POINTS = -1
ASSIST_POINTS = 1
RED_CARD_POINTS = -2
WIN_POINTS = 1
CLEAN_SHEET_POINTS = 2
TEAM_RED_CARD_POINTS = -1

# API-Football event vocabulary
EVENT_GOAL = "Goal"
EVENT_CARD = "Card"
DETAIL_PENALTY = "Penalty"
DETAIL_MISSED_PENALTY = "Missed Penalty"
DETAIL_RED_CARD = "Red Card"
COMMENT_SHOOTOUT = "Penalty Shootout"

ENTRY_PLAYER = "player"
ENTRY_TEAM = "team"


@dataclass
class PointLine:
    points: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"points": self.points, "reason": self.reason}


@dataclass
class PointBreakdown:
    """Point total plus the ordered lines that produced it."""
    points: int = 0
    breakdown: List[PointLine] = field(default_factory=list)

    def add(self, points: int, reason: str):
        self.points += points
        self.breakdown.append(PointLine(points, reason))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points": self.points,
            "breakdown": [line.to_dict() for line in self.breakdown],
        }


@dataclass(frozen=True)
class FixtureMeta:
    """
    Score state of a fixture as reported by the provider.

    ``home_goals``/``away_goals`` cover regulation and extra time only;
    shootout results live in ``home_penalties``/``away_penalties``.
    """
    fixture_id: int
    home_team_id: int
    away_team_id: int
    home_goals: int = 0
    away_goals: int = 0
    home_penalties: Optional[int] = None
    away_penalties: Optional[int] = None
    status: Optional[str] = None
    elapsed: Optional[int] = None

    def winner_team_id(self) -> Optional[int]:
        """Team that won (on goals, else on the shootout), or None for a draw."""
        if self.home_goals != self.away_goals:
            return self.home_team_id if self.home_goals > self.away_goals else self.away_team_id
        if self.home_penalties is None or self.away_penalties is None:
            return None
        if self.home_penalties == self.away_penalties:
            return None
        return self.home_team_id if self.home_penalties > self.away_penalties else self.away_team_id

    def goals_conceded(self, team_id: int) -> int:
        return self.away_goals if team_id == self.home_team_id else self.home_goals


@dataclass
class FixturePoints:
    fixture_id: int
    players: Dict[int, PointBreakdown] = field(default_factory=dict)
    teams: Dict[int, PointBreakdown] = field(default_factory=dict)

    def match_stat_rows(self) -> List[Dict[str, Any]]:
        return [
            {"fixture_id": self.fixture_id, "player_id": player_id, **totals.to_dict()}
            for player_id, totals in sorted(self.players.items())
        ]

    def team_match_stat_rows(self) -> List[Dict[str, Any]]:
        return [
            {"fixture_id": self.fixture_id, "team_id": team_id, "is_team_defense": True, **totals.to_dict()}
            for team_id, totals in sorted(self.teams.items())
        ]


def _nested_id(event: Dict[str, Any], key: str) -> Optional[int]:
    value = (event.get(key) or {}).get("id")
    return int(value) if value is not None else None


def _is_shootout(event: Dict[str, Any]) -> bool:
    return (event.get("comments") or "") == COMMENT_SHOOTOUT


def compute_fixture_points(events: Iterable[Dict[str, Any]], fixture_meta: FixtureMeta) -> FixturePoints:
    """
    Compute every player's and team's points for one fixture from scratch.

    Pure function of its inputs: calling it again with the same events and
    meta yields an equal result, so stored rows must be replaced, not added to.

    Args:
        events: API-Football ``/fixtures/events`` response items
        fixture_meta: Teams and score of the fixture

    Returns:
        FixturePoints with player and team-defense breakdowns
    """
    result = FixturePoints(fixture_id=fixture_meta.fixture_id)
    players: Dict[int, PointBreakdown] = defaultdict(PointBreakdown)
    red_cards_by_team: Dict[int, int] = defaultdict(int)

    for event in events:
        event_type = event.get("type")
        detail = event.get("detail") or ""
        player_id = _nested_id(event, "player")

        if event_type == EVENT_GOAL:
            # Shootout kicks decide the winner only; they score nobody points
            if _is_shootout(event):
                continue
            if detail == DETAIL_MISSED_PENALTY:
                if player_id is not None:
                    players[player_id].add(PENALTY_MISS_POINTS, "PK Miss")
                continue
            if player_id is not None:
                if detail == DETAIL_PENALTY:
                    players[player_id].add(PENALTY_GOAL_POINTS, "PK Goal")
                else:
                    players[player_id].add(GOAL_POINTS, "Goal")
            assist_id = _nested_id(event, "assist")
            if assist_id is not None:
                players[assist_id].add(ASSIST_POINTS, "Assist")

        elif event_type == EVENT_CARD and detail == DETAIL_RED_CARD:
            if player_id is not None:
                players[player_id].add(RED_CARD_POINTS, "Red Card")
            team_id = _nested_id(event, "team")
            if team_id is not None:
                red_cards_by_team[team_id] += 1

    result.players = dict(players)

    winner = fixture_meta.winner_team_id()
    for team_id in (fixture_meta.home_team_id, fixture_meta.away_team_id):
        defense = PointBreakdown()
        if winner == team_id:
            defense.add(WIN_POINTS, "Win")
        if fixture_meta.goals_conceded(team_id) == 0:
            defense.add(CLEAN_SHEET_POINTS, "Clean Sheet")
        cards = red_cards_by_team.get(team_id, 0)
        if cards:
            label = "Red Card" if cards == 1 else "Red Cards"
            defense.add(TEAM_RED_CARD_POINTS * cards, f"{cards} {label}")
        result.teams[team_id] = defense

    return result


def _entry_key(entry: Dict[str, Any]) -> Tuple[str, str]:
    is_team = entry.get("type") == ENTRY_TEAM or entry.get("position") == "TEAM"
    return (ENTRY_TEAM if is_team else ENTRY_PLAYER, str(entry.get("id")))


def apply_stage_scores(
    entries: List[Dict[str, Any]],
    stage_totals: Dict[str, Dict[Tuple[str, str], int]],
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Write recomputed stage totals into pool entries.

    Each recomputed stage replaces the entry's previous value for that stage.
    Entries without rows in a recomputed stage drop back to 0 if they had a value.

    Returns:
        (updated entries, number of entries whose scores changed)
    """
    updated: List[Dict[str, Any]] = []
    changed = 0
    for entry in entries:
        key = _entry_key(entry)
        scores = dict(entry.get("scores") or {})
        before = dict(scores)
        for stage, totals in stage_totals.items():
            if key in totals:
                scores[stage] = totals[key]
            elif stage in scores:
                scores[stage] = 0
        if scores != before:
            changed += 1
        updated.append({**entry, "scores": scores})
    return updated, changed


class PointsCalculator:
    """Rolls fixture stat rows up into player pool stage scores."""

    def __init__(self, db_client: SupabaseClient):
        self.db_client = db_client

    def get_stage_totals(
        self,
        competition_id: int,
        season: int,
        stages: Optional[Set[str]] = None
    ) -> Dict[str, Dict[Tuple[str, str], int]]:
        """
        Sum match-stat and team-match-stat points per stage.

        Args:
            competition_id: Competition (provider league) id
            season: Season start year
            stages: Limit to these stage labels (all stages when None)

        Returns:
            stage -> {(entry type, entry id) -> total points}
        """
        fixtures = self.db_client.get_fixtures(competition_id=competition_id, season=season)
        fixture_ids_by_stage: Dict[str, List[int]] = defaultdict(list)
        for fixture in fixtures:
            stage = fixture.get("stage")
            if not stage or (stages is not None and stage not in stages):
                continue
            fixture_ids_by_stage[stage].append(fixture["id"])

        stage_totals: Dict[str, Dict[Tuple[str, str], int]] = {}
        for stage, fixture_ids in fixture_ids_by_stage.items():
            totals: Dict[Tuple[str, str], int] = defaultdict(int)
            for row in self.db_client.get_match_stats(fixture_ids):
                totals[(ENTRY_PLAYER, str(row["player_id"]))] += row.get("points") or 0
            for row in self.db_client.get_team_match_stats(fixture_ids):
                totals[(ENTRY_TEAM, str(row["team_id"]))] += row.get("points") or 0
            stage_totals[stage] = dict(totals)
        return stage_totals

    def recalculate_pool_scores(
        self,
        competition_id: int,
        season: int,
        stages: Optional[Set[str]] = None
    ) -> int:
        """
        Recompute stage scores for every pool following a competition/season.

        Returns:
            Number of pools written
        """
        stage_totals = self.get_stage_totals(competition_id, season, stages)
        if not stage_totals:
            logger.debug("No stages to recalculate", extra={
                "competition_id": competition_id,
                "season": season,
            })
            return 0

        pools = self.db_client.get_player_pools(competition_id, season)
        written = 0
        for pool in pools:
            entries, changed = apply_stage_scores(pool.get("entries") or [], stage_totals)
            self.db_client.update_player_pool_entries(pool["id"], entries)
            written += 1
            logger.debug("Pool scores updated", extra={
                "pool_id": pool["id"],
                "entries_changed": changed,
            })

        logger.info("Recalculated pool scores", extra={
            "competition_id": competition_id,
            "season": season,
            "stages": sorted(stage_totals),
            "pools": written,
        })
        return written
