"""
Fixture Poll Orchestrator - decides when to pull live data and when a match is final.

Each tick reads the seeded, unfinalized fixtures, asks the provider which of
them are in play, processes the eligible ones and rolls the results into the
player pools of every touched competition/season.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from config import Config
from database.supabase_client import SupabaseClient
from football_api.client import APIFootballClient, APIFootballError, APIFootballRateLimitError
from refresh.fixtures import FixtureDataRefresher, fixture_status
from utils.clock import SYSTEM_CLOCK, Clock
from utils.points_calculator import PointsCalculator

logger = logging.getLogger(__name__)

# API-Football status.short codes
FIRST_HALF = "1H"
SECOND_HALF = "2H"
NOT_STARTED_STATUSES = {"TBD", "NS"}
HALF_TIME = "HT"
ALWAYS_PROCESS_STATUSES = {"ET", "P"}
FINISHED_STATUSES = {"FT", "AET", "PEN"}
# A fixture last seen with one of these that leaves the live feed has usually just ended
IN_PLAY_STATUSES = {"1H", "HT", "2H", "ET", "BT", "P", "SUSP", "INT", "LIVE"}
# Stored statuses of unfinalized fixtures that are fetched by id when missing from the live feed
REFETCH_STATUSES = IN_PLAY_STATUSES | FINISHED_STATUSES

# Minutes of elapsed time before a half is worth polling
FIRST_HALF_MIN_ELAPSED = 1
SECOND_HALF_MIN_ELAPSED = 47


class FixtureAction(Enum):
    """What a tick does with one fixture."""
    SKIP = "skip"
    PROCESS = "process"
    FINALIZE = "finalize"  # process, then mark finalized


def decide_fixture_action(status: Optional[str], elapsed: Optional[int]) -> FixtureAction:
    """
    Map provider status and elapsed minutes to a poll action.

    Args:
        status: Provider status short code (1H, HT, 2H, FT, ...)
        elapsed: Minutes played as reported by the provider

    Returns:
        FixtureAction
    """
    elapsed = elapsed or 0
    if status in FINISHED_STATUSES:
        return FixtureAction.FINALIZE
    if status in ALWAYS_PROCESS_STATUSES:
        return FixtureAction.PROCESS
    if status == FIRST_HALF:
        return FixtureAction.PROCESS if elapsed >= FIRST_HALF_MIN_ELAPSED else FixtureAction.SKIP
    if status == SECOND_HALF:
        return FixtureAction.PROCESS if elapsed >= SECOND_HALF_MIN_ELAPSED else FixtureAction.SKIP
    # NS, TBD, HT, BT and the suspended/postponed/cancelled family
    return FixtureAction.SKIP


def _coerce_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class TickSummary:
    """Counters for one poll tick."""
    processed: int = 0
    finalized: int = 0
    skipped: int = 0
    untracked: int = 0
    failed: int = 0
    pools_recalculated: List[Tuple[int, int]] = field(default_factory=list)


class FixturePollOrchestrator:
    """Runs the periodic fixture poll."""

    def __init__(
        self,
        config: Config,
        api_client: Optional[APIFootballClient] = None,
        db_client: Optional[SupabaseClient] = None,
        clock: Clock = SYSTEM_CLOCK,
    ):
        self.config = config
        self.clock = clock
        self.api_client = api_client
        self.db_client = db_client
        self.fixture_refresher: Optional[FixtureDataRefresher] = None
        self.points_calculator: Optional[PointsCalculator] = None
        self.running = False
        self._owns_api_client = api_client is None
        # Ticks never overlap
        self._tick_lock = asyncio.Lock()
        # Set when the provider reports quota exhaustion
        self._backoff_until: Optional[float] = None
        # (competition, season) -> stages whose pool scores still need recomputing.
        # Survives failed and timed-out ticks; cleared only after a successful recompute.
        self._pending_pools: Dict[Tuple[int, int], Set[Optional[str]]] = defaultdict(set)

    async def initialize(self):
        """Initialize orchestrator and clients."""
        logger.info("Orchestrator starting")

        if self.api_client is None:
            self.api_client = APIFootballClient(self.config, clock=self.clock)
        if self.db_client is None:
            self.db_client = SupabaseClient(self.config)
        self.fixture_refresher = FixtureDataRefresher(self.api_client, self.db_client)
        self.points_calculator = PointsCalculator(self.db_client)

        logger.info("Orchestrator ready")

    async def shutdown(self):
        """Shutdown orchestrator gracefully."""
        logger.info("Orchestrator shutting down")
        self.running = False

        if self.api_client and self._owns_api_client:
            await self.api_client.close()

        logger.info("Orchestrator stopped")

    def _in_backoff(self) -> bool:
        if self._backoff_until is None:
            return False
        if self.clock.monotonic() >= self._backoff_until:
            self._backoff_until = None
            return False
        return True

    def _start_backoff(self, error: APIFootballRateLimitError):
        delay = error.retry_after_seconds or self.config.rate_limit_retry_after
        until = self.clock.monotonic() + delay
        if self._backoff_until is None or until > self._backoff_until:
            self._backoff_until = until

    async def tick(self) -> Optional[TickSummary]:
        """
        Run one poll tick.

        Returns:
            TickSummary, or None when the tick was skipped (overlap, backoff)
            or timed out
        """
        if self._tick_lock.locked():
            logger.warning("Previous tick still running, skipping")
            return None

        async with self._tick_lock:
            if self._in_backoff():
                logger.info("Rate limit backoff active, skipping tick", extra={
                    "remaining_seconds": round(self._backoff_until - self.clock.monotonic(), 1)
                })
                return None
            try:
                return await asyncio.wait_for(self._run_tick(), timeout=self.config.tick_timeout)
            except asyncio.TimeoutError:
                logger.error("Tick timed out, will retry next tick", extra={
                    "timeout_seconds": self.config.tick_timeout
                })
                return None

    def _load_seeded_fixtures(self) -> Dict[Tuple[int, int], Dict[int, Dict[str, Any]]]:
        """Unfinalized seeded fixtures grouped by (competition, season)."""
        grouped: Dict[Tuple[int, int], Dict[int, Dict[str, Any]]] = defaultdict(dict)
        for fixture in self.db_client.get_fixtures(finalized=False):
            if fixture.get("finalized"):
                continue
            season = _coerce_int(fixture.get("season"))
            if season is None:
                logger.warning("Fixture has non-numeric season, ignoring", extra={
                    "fixture_id": fixture.get("id"),
                    "season": fixture.get("season"),
                })
                continue
            grouped[(int(fixture["competition_id"]), season)][int(fixture["id"])] = fixture
        return grouped

    async def _run_tick(self) -> TickSummary:
        summary = TickSummary()
        # Finished fixtures are only marked finalized once their pools are up to date
        to_finalize: Dict[Tuple[int, int], List[int]] = defaultdict(list)

        for key, seeded in self._load_seeded_fixtures().items():
            competition_id, season = key
            candidates = await self._collect_candidates(competition_id, season, seeded, summary)
            for fixture_id in sorted(candidates):
                fixture = seeded[fixture_id]
                applied = await self._process_fixture(fixture, candidates[fixture_id], summary)
                if applied is None:
                    continue
                self._pending_pools[key].add(fixture.get("stage"))
                if applied is FixtureAction.FINALIZE:
                    to_finalize[key].append(fixture_id)

        # Once per competition/season, not once per fixture
        for key, stages in list(self._pending_pools.items()):
            competition_id, season = key
            try:
                self.points_calculator.recalculate_pool_scores(
                    competition_id, season, {s for s in stages if s}
                )
            except Exception as e:
                logger.error("Pool score recalculation failed, will retry next tick", extra={
                    "competition_id": competition_id,
                    "season": season,
                    "error": str(e),
                }, exc_info=True)
                continue
            del self._pending_pools[key]
            summary.pools_recalculated.append(key)
            for fixture_id in to_finalize.pop(key, []):
                self._finalize_fixture(fixture_id, summary)

        logger.info("Tick complete", extra={
            "processed": summary.processed,
            "finalized": summary.finalized,
            "skipped": summary.skipped,
            "untracked": summary.untracked,
            "failed": summary.failed,
        })
        return summary

    async def _collect_candidates(
        self,
        competition_id: int,
        season: int,
        seeded: Dict[int, Dict[str, Any]],
        summary: TickSummary,
    ) -> Dict[int, Dict[str, Any]]:
        """Provider fixture items for seeded fixtures that are live or just ended."""
        try:
            live_items = await self.api_client.get_live_fixtures(competition_id, season)
        except APIFootballError as e:
            self._log_upstream_failure("Live fixtures fetch failed", e, competition_id=competition_id, season=season)
            summary.failed += 1
            return {}

        candidates: Dict[int, Dict[str, Any]] = {}
        for item in live_items:
            raw_id = (item.get("fixture") or {}).get("id")
            fixture_id = _coerce_int(raw_id)
            if fixture_id is None:
                logger.warning("Live fixture item with malformed id, skipping", extra={
                    "competition_id": competition_id,
                    "raw_fixture_id": raw_id,
                })
                summary.failed += 1
                continue
            # Seeding decides which fixtures belong to a competition, not the live feed
            if fixture_id not in seeded:
                logger.debug("Live fixture not tracked, skipping", extra={"fixture_id": fixture_id})
                summary.untracked += 1
                continue
            candidates[fixture_id] = item

        # Finished matches leave the live feed; fetch their final state directly
        for fixture_id, fixture in seeded.items():
            if fixture_id in candidates or fixture.get("status") not in REFETCH_STATUSES:
                continue
            try:
                item = await self.api_client.get_fixture(fixture_id)
            except APIFootballError as e:
                self._log_upstream_failure("Fixture status fetch failed", e, fixture_id=fixture_id)
                summary.failed += 1
                continue
            if item is not None:
                candidates[fixture_id] = item

        return candidates

    async def _process_fixture(
        self,
        fixture: Dict[str, Any],
        item: Dict[str, Any],
        summary: TickSummary,
    ) -> Optional[FixtureAction]:
        """
        Apply the state machine to one fixture.

        Returns:
            The action applied when stat rows were rewritten (PROCESS or
            FINALIZE), otherwise None
        """
        fixture_id = int(fixture["id"])
        if fixture.get("finalized"):
            summary.skipped += 1
            return None

        status, elapsed = fixture_status(item)
        action = decide_fixture_action(status, elapsed)

        if action is FixtureAction.SKIP:
            if self._record_live_state(fixture, status, elapsed):
                summary.skipped += 1
            else:
                summary.failed += 1
            logger.debug("Fixture not eligible this tick", extra={
                "fixture_id": fixture_id,
                "status": status,
                "elapsed": elapsed,
            })
            return None

        try:
            await self.fixture_refresher.refresh_fixture(item)
        except APIFootballError as e:
            self._log_upstream_failure("Fixture refresh failed", e, fixture_id=fixture_id)
            summary.failed += 1
            # Keep the stored status current so the fixture is re-fetched once it leaves the live feed
            self._record_live_state(fixture, status, elapsed)
            return None
        except Exception as e:
            logger.error("Fixture refresh failed", extra={
                "fixture_id": fixture_id,
                "error": str(e),
                "error_type": type(e).__name__,
            }, exc_info=True)
            summary.failed += 1
            self._record_live_state(fixture, status, elapsed)
            return None

        fixture["status"], fixture["elapsed"] = status, elapsed
        summary.processed += 1
        return action

    def _record_live_state(self, fixture: Dict[str, Any], status: Optional[str], elapsed: int) -> bool:
        """Persist provider status/elapsed when they changed. Returns False if the write failed."""
        if status == fixture.get("status") and elapsed == fixture.get("elapsed"):
            return True
        try:
            self.db_client.update_fixture_live_state(fixture["id"], status, elapsed)
        except Exception as e:
            logger.error("Fixture live state write failed", extra={
                "fixture_id": fixture["id"],
                "status": status,
                "elapsed": elapsed,
                "error": str(e),
                "error_type": type(e).__name__,
            }, exc_info=True)
            return False
        fixture["status"], fixture["elapsed"] = status, elapsed
        return True

    def _finalize_fixture(self, fixture_id: int, summary: TickSummary):
        try:
            self.db_client.mark_fixture_finalized(fixture_id)
        except Exception as e:
            # Stored status is finished, so the next tick re-fetches and retries
            logger.error("Marking fixture finalized failed", extra={
                "fixture_id": fixture_id,
                "error": str(e),
                "error_type": type(e).__name__,
            }, exc_info=True)
            summary.failed += 1
            return
        summary.finalized += 1

    def _log_upstream_failure(self, message: str, error: APIFootballError, **context):
        if isinstance(error, APIFootballRateLimitError):
            self._start_backoff(error)
        logger.warning(message, extra={**context, "upstream_error": error.to_dict()})

    async def run(self):
        """Tick every poll_interval seconds until shut down."""
        logger.info("Fixture poll loop started", extra={"poll_interval": self.config.poll_interval})
        self.running = True
        while self.running:
            started = self.clock.monotonic()
            try:
                await self.tick()
            except asyncio.CancelledError:
                logger.info("Fixture poll loop cancelled")
                break
            except Exception as e:
                logger.error("Poll loop error", extra={"error": str(e)}, exc_info=True)
            remaining = self.config.poll_interval - (self.clock.monotonic() - started)
            try:
                await self.clock.sleep(max(0.0, remaining))
            except asyncio.CancelledError:
                break
        self.running = False
