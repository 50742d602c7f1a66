"""
Configuration management for the live scoring service.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass, field


@dataclass
class Config:
    """Application configuration."""

    # Environment
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    # Supabase Configuration
    supabase_url: str = field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = field(default_factory=lambda: os.getenv("SUPABASE_KEY", ""))
    supabase_service_key: str | None = field(default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY"))

    # API-Football Configuration
    api_football_key: str = field(default_factory=lambda: os.getenv("API_FOOTBALL_KEY", ""))
    api_football_base_url: str = field(
        default_factory=lambda: os.getenv("API_FOOTBALL_BASE_URL", "https://v3.football.api-sports.io")
    )

    # Rate Limiting (free plan: 10 req/min)
    min_request_interval: float = field(default_factory=lambda: float(os.getenv("MIN_REQUEST_INTERVAL", "6.0")))
    max_requests_per_minute: int = field(default_factory=lambda: int(os.getenv("MAX_REQUESTS_PER_MINUTE", "10")))
    rate_limit_retry_after: int = field(default_factory=lambda: int(os.getenv("RATE_LIMIT_RETRY_AFTER", "60")))
    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "30.0")))

    # Cache Configuration
    squad_cache_ttl: int = field(default_factory=lambda: int(os.getenv("SQUAD_CACHE_TTL", "43200")))  # 12 hours

    # Poller
    poll_interval: int = field(default_factory=lambda: int(os.getenv("POLL_INTERVAL", "60")))
    # Upper bound for one tick including all of its upstream calls
    tick_timeout: int = field(default_factory=lambda: int(os.getenv("TICK_TIMEOUT", "300")))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))  # json or text

    # API server and tests run without Supabase credentials
    require_database: bool = True

    def validate(self):
        """Validate configuration."""
        errors = []

        if self.require_database:
            if not self.supabase_url:
                errors.append("SUPABASE_URL is required")
            if not self.supabase_key:
                errors.append("SUPABASE_KEY is required")
        if not self.api_football_key:
            errors.append("API_FOOTBALL_KEY is required")
        if self.min_request_interval < 0:
            errors.append("MIN_REQUEST_INTERVAL must be >= 0")
        if self.max_requests_per_minute <= 0:
            errors.append("MAX_REQUESTS_PER_MINUTE must be > 0")
        if self.poll_interval <= 0:
            errors.append("POLL_INTERVAL must be > 0")
        if self.log_format not in ("json", "text"):
            errors.append("LOG_FORMAT must be 'json' or 'text'")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True

    def __post_init__(self):
        """Validate after initialization."""
        self.validate()
