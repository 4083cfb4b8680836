"""Configuration for the plan engine."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


_ROOT = Path(__file__).parent.parent
_DATA = _ROOT / "data"


@dataclass
class Config:
    # Data files
    cities_file: Path = _DATA / "tdsp_cities.json"
    zip_to_city_file: Path = _DATA / "zip_to_city.json"
    multi_tdsp_file: Path = _DATA / "multi_tdsp_zips.json"
    non_deregulated_file: Path = _DATA / "non_deregulated_areas.json"

    # Pricing API
    comparepower_api_url: str = "https://pricing.api.comparepower.com"
    comparepower_api_key: str = ""
    request_timeout: float = 10.0
    retry_attempts: int = 3
    plan_cache_ttl: int = 3600  # seconds
    plan_cache_max_entries: int = 100

    # ERCOT ESIID API
    ercot_api_url: str = "https://ercot.api.comparepower.com"
    ercot_api_key: str = ""
    esiid_cache_db: Path = _DATA / "esiid_cache.db"
    esiid_cache_ttl_hours: int = 1

    # Circuit breaker
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout: float = 60.0
    breaker_half_open_max_calls: int = 1

    # Plan snapshots (SQLAlchemy URL)
    database_url: str = f"sqlite:///{_DATA / 'plan_snapshots.db'}"
    snapshot_max_age: int = 7 * 86400

    # API
    rate_limit_per_minute: int = 60
    log_level: str = "INFO"

    # Faceted navigation
    max_filter_depth: int = 3
    default_display_usage: int = 1000
    valid_usage_levels: list = field(default_factory=lambda: [500, 1000, 2000])

    # Cost analysis: 2024 Texas residential average, cents/kWh
    texas_average_rate: float = 12.8

    @classmethod
    def from_env(cls, env_file: Path = None) -> "Config":
        """Build a Config from defaults overridden by environment (.env aware)."""
        load_dotenv(env_file or _ROOT / ".env")
        config = cls()

        config.comparepower_api_url = os.environ.get("COMPAREPOWER_API_URL", config.comparepower_api_url)
        config.comparepower_api_key = os.environ.get("COMPAREPOWER_API_KEY", "")
        config.ercot_api_url = os.environ.get("ERCOT_API_URL", config.ercot_api_url)
        config.ercot_api_key = os.environ.get("ERCOT_API_KEY", "") or config.comparepower_api_key
        config.database_url = os.environ.get("DATABASE_URL", config.database_url)
        config.log_level = os.environ.get("LOG_LEVEL", config.log_level).upper()

        rate_limit = os.environ.get("RATE_LIMIT_PER_MINUTE", "")
        if rate_limit.isdigit():
            config.rate_limit_per_minute = int(rate_limit)

        return config
