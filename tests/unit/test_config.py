"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from pushgate.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        monkeypatch.chdir(tmp_path)  # no .env here
        s = Settings()
        assert s.environment == "development"
        assert s.diff_package_count == 5
        assert s.cache_expiry_seconds == 3600
        assert s.enable_package_diffing is True
        assert s.is_production is False
        assert s.counters_enabled is False

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PUSHGATE_ENVIRONMENT", "production")
        monkeypatch.setenv("PUSHGATE_DIFF_PACKAGE_COUNT", "3")
        monkeypatch.setenv("PUSHGATE_LEDGER_PATH", "/data/ledger.db")
        monkeypatch.setenv("PUSHGATE_REDIS_URL", "redis://cache:6379/1")
        s = Settings()
        assert s.is_production is True
        assert s.diff_package_count == 3
        assert s.ledger_path == Path("/data/ledger.db")
        assert s.counters_enabled is True

    def test_dotenv_file(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        (tmp_path / ".env").write_text("PUSHGATE_LOG_LEVEL=DEBUG\n")
        monkeypatch.chdir(tmp_path)
        assert Settings().log_level == "DEBUG"

    def test_diff_package_count_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(diff_package_count=0)
