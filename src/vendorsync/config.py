"""
Configuration for the vendor sync engine.

Uses Pydantic for validation and environment loading.
"""

import os
from functools import lru_cache
from typing import Annotated, Dict, Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

DEFAULT_DATABASE_URL = "postgresql+psycopg://localhost:5432/vendorsync"


def parse_vendor_timeouts(raw: str) -> Dict[str, float]:
    """Parse ``"moscot=300,acme=45"`` into ``{"moscot": 300.0, "acme": 45.0}``."""
    timeouts: Dict[str, float] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk or "=" not in chunk:
            continue
        slug, value = chunk.split("=", 1)
        timeouts[slug.strip().lower()] = float(value)
    return timeouts


class SyncConfig(BaseSettings):
    """Master configuration for the sync engine.

    Loads from environment variables (see ``from_env``) or ``.env``.
    """

    model_config = ConfigDict(
        env_prefix="VENDORSYNC_",
        env_file=".env",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL, description="SQLAlchemy async URL of the product DB"
    )

    # Fetcher
    scraper_workdir: str = Field(
        default="", description="Working directory for scraper processes, empty=cwd"
    )
    fetch_timeout_sec: float = Field(default=120.0, description="Default fetch timeout")
    vendor_timeouts: Annotated[Dict[str, float], NoDecode] = Field(
        default_factory=dict, description="Per-slug fetch timeout overrides"
    )

    # Apply
    apply_timeout_sec: float = Field(default=60.0, description="Apply transaction timeout")

    # Engine
    max_parallel_runs: int = Field(default=4, ge=1, description="Concurrent vendors in run_all")
    alert_on_failure: bool = Field(default=True, description="Raise an alert on Failed runs")

    # Adapter SDK paths
    adapters_dir: str = Field(default="", description="Extra adapter plugin directory")
    fixtures_dir: str = Field(default="", description="Adapter sample fixtures directory")

    @field_validator("vendor_timeouts", mode="before")
    @classmethod
    def _coerce_timeouts(cls, value):
        if isinstance(value, str):
            return parse_vendor_timeouts(value)
        return value

    def timeout_for(self, slug: str) -> float:
        """Fetch timeout for a vendor, honouring per-slug overrides."""
        return self.vendor_timeouts.get(slug.lower(), self.fetch_timeout_sec)

    def workdir(self) -> Optional[str]:
        return self.scraper_workdir or None

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            database_url=os.getenv("VENDORSYNC_DATABASE_URL", "")
            or os.getenv("DATABASE_URL", "")
            or DEFAULT_DATABASE_URL,
            scraper_workdir=os.getenv("VENDORSYNC_SCRAPER_WORKDIR", ""),
            fetch_timeout_sec=float(os.getenv("VENDORSYNC_FETCH_TIMEOUT_SEC", "120")),
            vendor_timeouts=parse_vendor_timeouts(
                os.getenv("VENDORSYNC_VENDOR_TIMEOUTS", "")
            ),
            apply_timeout_sec=float(os.getenv("VENDORSYNC_APPLY_TIMEOUT_SEC", "60")),
            max_parallel_runs=int(os.getenv("VENDORSYNC_MAX_PARALLEL_RUNS", "4")),
            alert_on_failure=os.getenv("VENDORSYNC_ALERT_ON_FAILURE", "true").lower()
            == "true",
            adapters_dir=os.getenv("VENDORSYNC_ADAPTERS_DIR", ""),
            fixtures_dir=os.getenv("VENDORSYNC_FIXTURES_DIR", ""),
        )


@lru_cache(maxsize=1)
def get_config() -> SyncConfig:
    """Get the process-wide configuration (loaded once from the environment)."""
    return SyncConfig.from_env()
