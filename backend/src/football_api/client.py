"""
API-Football client with a serialized dispatch queue, rate limiting and error classification.

Every outbound call to the provider goes through one instance of this client.
Calls are dispatched one at a time, in arrival order, and never closer together
than the configured minimum interval.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config
from football_api.cache import ResponseCache
from utils.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)

SQUADS_ENDPOINT = "/players/squads"


class UpstreamErrorKind(str, Enum):
    """Classification of provider failures."""
    RATE_LIMITED = "RateLimited"  # embedded error list or HTTP 429, back off
    TRANSPORT_5XX = "Transport5xx"  # HTTP/network failure, retry next tick
    MALFORMED = "Malformed"  # response missing expected fields


class APIFootballError(Exception):
    """Base exception for API-Football errors."""

    kind = UpstreamErrorKind.TRANSPORT_5XX

    def __init__(
        self,
        message: str,
        *,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        http_status: Optional[int] = None,
        provider_status: Optional[Any] = None,
        provider_errors: Optional[Any] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        super().__init__(message)
        self.endpoint = endpoint
        self.params = dict(params or {})
        self.http_status = http_status
        self.provider_status = provider_status
        self.provider_errors = provider_errors
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> Dict[str, Any]:
        """Uniform error surface handed to callers of the core."""
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": str(self),
            "http_status": self.http_status,
            "endpoint": self.endpoint,
            "params": self.params,
        }
        if self.provider_status is not None:
            data["provider_status"] = self.provider_status
        if self.provider_errors:
            data["provider_errors"] = self.provider_errors
        if self.retry_after_seconds is not None:
            data["retry_after_seconds"] = self.retry_after_seconds
        return data


class APIFootballRateLimitError(APIFootballError):
    """Raised when the provider reports request budget exhaustion."""
    kind = UpstreamErrorKind.RATE_LIMITED


class APIFootballTransportError(APIFootballError):
    """Raised for non-2xx responses, timeouts and network failures."""
    kind = UpstreamErrorKind.TRANSPORT_5XX


class APIFootballMalformedError(APIFootballError):
    """Raised when a response lacks the fields we need."""
    kind = UpstreamErrorKind.MALFORMED


def _has_provider_errors(errors: Any) -> bool:
    # API-Football sends [] when clean and a dict of messages or a list when not
    if isinstance(errors, dict):
        return any(bool(value) for value in errors.values())
    return bool(errors)


def _parse_retry_after(value: Optional[str], default: int) -> int:
    if not value:
        return default
    try:
        return max(0, int(float(value)))
    except ValueError:
        return default


class APIFootballClient:
    """Client for the API-Football v3 provider."""

    def __init__(
        self,
        config: Config,
        clock: Clock = SYSTEM_CLOCK,
        cache: Optional[ResponseCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.clock = clock
        self.base_url = config.api_football_base_url.rstrip("/")
        self.min_interval = config.min_request_interval
        self.rate_limit_retry_after = config.rate_limit_retry_after
        self.squad_cache_ttl = config.squad_cache_ttl
        self.cache = cache if cache is not None else ResponseCache(clock)

        # Per-minute plan quota on top of the minimum spacing
        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        # FIFO: waiters acquire in arrival order
        self._dispatch_lock = asyncio.Lock()
        self._next_allowed_dispatch = 0.0
        self.last_dispatch_time: Optional[float] = None

        self.client = http_client or httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
        )
        self._headers = {
            "x-apisports-key": config.api_football_key,
            "Accept": "application/json",
        }

    async def _reserve_dispatch_slot(self):
        """Wait for the next allowed dispatch time and claim the following slot."""
        await self.throttler.acquire()

        wait_time = self._next_allowed_dispatch - self.clock.monotonic()
        if wait_time > 0:
            await self.clock.sleep(wait_time)

        # Reserved before the request goes out so failed calls still spend budget
        now = self.clock.monotonic()
        self._next_allowed_dispatch = now + self.min_interval
        self.last_dispatch_time = now

    async def call(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        label: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Dispatch one GET request through the serialized queue.

        Args:
            endpoint: Provider endpoint path, e.g. "/fixtures/events"
            params: Query parameters
            label: Short description for logs

        Returns:
            Parsed JSON payload (always contains a "response" list)

        Raises:
            APIFootballRateLimitError: Embedded provider errors or HTTP 429
            APIFootballTransportError: Other non-2xx, timeout or network failure
            APIFootballMalformedError: Body is not JSON or lacks "response"
        """
        params = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async with self._dispatch_lock:
            await self._reserve_dispatch_slot()
            logger.debug("Dispatching API-Football request", extra={
                "endpoint": endpoint,
                "params": params,
                "label": label,
            })
            try:
                response = await self.client.get(url, params=params, headers=self._headers)
            except httpx.TimeoutException as e:
                logger.warning("Timeout from API-Football", extra={"endpoint": endpoint, "params": params})
                raise APIFootballTransportError(
                    f"Request timeout: {endpoint}", endpoint=endpoint, params=params
                ) from e
            except httpx.HTTPError as e:
                logger.warning("Network error from API-Football", extra={
                    "endpoint": endpoint,
                    "params": params,
                    "error": str(e),
                })
                raise APIFootballTransportError(
                    f"Network error: {e}", endpoint=endpoint, params=params
                ) from e

        return self._parse_response(response, endpoint, params)

    def _parse_response(
        self,
        response: httpx.Response,
        endpoint: str,
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Classify the response and return its JSON payload."""
        status_code = response.status_code

        if status_code == 429:
            retry_after = _parse_retry_after(
                response.headers.get("Retry-After"), self.rate_limit_retry_after
            )
            logger.warning("Rate limited by API-Football", extra={
                "endpoint": endpoint,
                "retry_after": retry_after,
            })
            raise APIFootballRateLimitError(
                "Rate limited (HTTP 429)",
                endpoint=endpoint,
                params=params,
                http_status=status_code,
                retry_after_seconds=retry_after,
            )

        if not response.is_success:
            error_text = response.text[:500]
            logger.error("Error response from API-Football", extra={
                "endpoint": endpoint,
                "status_code": status_code,
                "error": error_text,
            })
            raise APIFootballTransportError(
                f"HTTP {status_code}: {error_text}",
                endpoint=endpoint,
                params=params,
                http_status=status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                "endpoint": endpoint,
                "content_type": response.headers.get("content-type", "unknown"),
                "response_preview": response.text[:200],
            })
            raise APIFootballMalformedError(
                f"Failed to parse JSON: {e}",
                endpoint=endpoint,
                params=params,
                http_status=status_code,
            ) from e

        if not isinstance(payload, dict):
            raise APIFootballMalformedError(
                "Response body is not an object",
                endpoint=endpoint,
                params=params,
                http_status=status_code,
            )

        # Quota exhaustion arrives as HTTP 200 with an embedded error list
        errors = payload.get("errors")
        if _has_provider_errors(errors):
            logger.warning("API-Football returned embedded errors", extra={
                "endpoint": endpoint,
                "provider_errors": errors,
            })
            raise APIFootballRateLimitError(
                f"Provider errors: {errors}",
                endpoint=endpoint,
                params=params,
                http_status=status_code,
                provider_status=payload.get("status"),
                provider_errors=errors,
                retry_after_seconds=self.rate_limit_retry_after,
            )

        if not isinstance(payload.get("response"), list):
            raise APIFootballMalformedError(
                "Response payload missing 'response' list",
                endpoint=endpoint,
                params=params,
                http_status=status_code,
            )

        return payload

    async def get_live_fixtures(self, league_id: int, season: int) -> List[Dict[str, Any]]:
        """
        Get fixtures currently in play for a competition.

        Args:
            league_id: API-Football league id
            season: Season start year

        Returns:
            List of fixture dictionaries
        """
        payload = await self.call(
            "/fixtures",
            {"live": "all", "league": league_id, "season": season},
            label="live fixtures",
        )
        fixtures = payload["response"]
        logger.debug("Fetched live fixtures", extra={
            "league_id": league_id,
            "season": season,
            "fixtures_count": len(fixtures),
        })
        return fixtures

    async def get_fixture(self, fixture_id: int) -> Optional[Dict[str, Any]]:
        """Get a single fixture by id, or None when the provider does not know it."""
        payload = await self.call("/fixtures", {"id": fixture_id}, label="fixture by id")
        fixtures = payload["response"]
        return fixtures[0] if fixtures else None

    async def get_fixtures(self, league_id: int, season: int) -> List[Dict[str, Any]]:
        payload = await self.call("/fixtures", {"league": league_id, "season": season}, label="fixtures")
        return payload["response"]

    async def get_fixture_events(self, fixture_id: int) -> List[Dict[str, Any]]:
        """Get goals, cards and substitutions for a fixture."""
        payload = await self.call("/fixtures/events", {"fixture": fixture_id}, label="fixture events")
        return payload["response"]

    async def get_fixture_statistics(self, fixture_id: int) -> List[Dict[str, Any]]:
        """Get per-team statistics for a fixture."""
        payload = await self.call("/fixtures/statistics", {"fixture": fixture_id}, label="fixture statistics")
        return payload["response"]

    async def get_squad(self, team_id: int, use_cache: bool = True) -> Dict[str, Any]:
        """
        Get a team's current squad.

        Rosters change rarely and cost a request each, so they are cached for
        ``squad_cache_ttl`` seconds.

        Args:
            team_id: API-Football team id
            use_cache: Whether to serve from / populate the cache

        Returns:
            Full squads payload
        """
        params = {"team": team_id}
        if not use_cache:
            return await self.call(SQUADS_ENDPOINT, params, label="squad")
        return await self.cache.get_or_fetch(
            SQUADS_ENDPOINT,
            params,
            self.squad_cache_ttl,
            lambda: self.call(SQUADS_ENDPOINT, params, label="squad"),
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
