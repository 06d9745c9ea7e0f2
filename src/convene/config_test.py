"""
Tests for environment-driven configuration.

Run with: CONVENE_ENV=test pytest src/convene/config_test.py -v
"""

import pytest

from convene.config import Config


class TestFromEnv:
    """Tests for Config.from_env()"""

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://db:5432/convene_ci")
        monkeypatch.setenv("CACHE_BACKEND", "Redis")
        monkeypatch.setenv("MAX_HIERARCHY_DEPTH", "8")
        monkeypatch.setenv("ACTIVITY_LOG_BUFFER_SIZE", "100")

        cfg = Config.from_env()

        assert cfg.database_url == "postgresql://db:5432/convene_ci"
        assert cfg.cache_backend == "redis"
        assert cfg.max_hierarchy_depth == 8
        assert cfg.activity_log_buffer_size == 100

    @pytest.mark.parametrize(
        "value,expected", [("1", True), ("true", True), ("ON", True), ("0", False), ("no", False)]
    )
    def test_activity_log_flag(self, monkeypatch, value, expected):
        monkeypatch.setenv("ACTIVITY_LOG_ENABLED", value)

        assert Config.from_env().activity_log_enabled is expected

    def test_defaults(self, monkeypatch):
        for name in ("CACHE_BACKEND", "MAX_HIERARCHY_DEPTH", "ACTIVITY_LOG_ENABLED"):
            monkeypatch.delenv(name, raising=False)

        cfg = Config.from_env()

        assert cfg.cache_backend == "memory"
        assert cfg.max_hierarchy_depth == 32
        assert cfg.activity_log_enabled is True
