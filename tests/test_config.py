"""
Tests for SyncConfig.
"""

from vendorsync.config import DEFAULT_DATABASE_URL, SyncConfig, parse_vendor_timeouts

ENV_KEYS = [
    "LOG_LEVEL",
    "DATABASE_URL",
    "VENDORSYNC_DATABASE_URL",
    "VENDORSYNC_SCRAPER_WORKDIR",
    "VENDORSYNC_FETCH_TIMEOUT_SEC",
    "VENDORSYNC_VENDOR_TIMEOUTS",
    "VENDORSYNC_APPLY_TIMEOUT_SEC",
    "VENDORSYNC_MAX_PARALLEL_RUNS",
    "VENDORSYNC_ALERT_ON_FAILURE",
]


class TestSyncConfig:
    """Test SyncConfig defaults and environment loading."""

    def test_default_values(self):
        """Test SyncConfig has correct defaults."""
        config = SyncConfig()

        assert config.fetch_timeout_sec == 120
        assert config.apply_timeout_sec == 60
        assert config.max_parallel_runs == 4
        assert config.alert_on_failure is True
        assert config.workdir() is None

    def test_timeout_for_overrides(self):
        config = SyncConfig(fetch_timeout_sec=30, vendor_timeouts={"moscot": 300})

        assert config.timeout_for("moscot") == 300
        assert config.timeout_for("MOSCOT") == 300
        assert config.timeout_for("acme") == 30

    def test_parse_vendor_timeouts(self):
        assert parse_vendor_timeouts("moscot=300, Acme=45.5,,broken") == {
            "moscot": 300.0,
            "acme": 45.5,
        }

    def test_from_env_loads_defaults(self, monkeypatch):
        """Test from_env() returns config with defaults."""
        for key in ENV_KEYS:
            monkeypatch.delenv(key, raising=False)

        config = SyncConfig.from_env()

        assert config.database_url == DEFAULT_DATABASE_URL
        assert config.log_level == "INFO"
        assert config.vendor_timeouts == {}

    def test_from_env_loads_custom_values(self, monkeypatch):
        """Test from_env() loads from environment."""
        monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://db.prod/catalog")
        monkeypatch.setenv("VENDORSYNC_SCRAPER_WORKDIR", "/srv/scrapers")
        monkeypatch.setenv("VENDORSYNC_VENDOR_TIMEOUTS", "moscot=300")
        monkeypatch.setenv("VENDORSYNC_MAX_PARALLEL_RUNS", "8")
        monkeypatch.setenv("VENDORSYNC_ALERT_ON_FAILURE", "false")
        monkeypatch.delenv("VENDORSYNC_DATABASE_URL", raising=False)

        config = SyncConfig.from_env()

        assert config.database_url == "postgresql+psycopg://db.prod/catalog"
        assert config.workdir() == "/srv/scrapers"
        assert config.timeout_for("moscot") == 300
        assert config.max_parallel_runs == 8
        assert config.alert_on_failure is False

    def test_prefixed_database_url_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://fallback/db")
        monkeypatch.setenv("VENDORSYNC_DATABASE_URL", "sqlite+aiosqlite:///local.db")

        assert SyncConfig.from_env().database_url == "sqlite+aiosqlite:///local.db"

    def test_settings_parse_timeouts_string(self, monkeypatch):
        """BaseSettings reads the slug=sec format directly from the environment."""
        monkeypatch.setenv("VENDORSYNC_VENDOR_TIMEOUTS", "acme=12")

        assert SyncConfig().vendor_timeouts == {"acme": 12.0}
