"""Tests for updater settings."""

import pytest
from pydantic import ValidationError

from podfix.config import TRUNK_CDN_URL, UpdaterSettings
from podfix.retry import RetryPolicy


class TestUpdaterSettings:
    """Test defaults and environment overrides."""

    def test_defaults(self):
        """Should default to the trunk CDN."""
        settings = UpdaterSettings()
        assert settings.cdn_url == TRUNK_CDN_URL
        assert settings.timeout == 10.0
        assert settings.max_concurrency == 6

    def test_from_env(self, monkeypatch):
        """Should read PODFIX_* variables."""
        monkeypatch.setenv("PODFIX_CDN_URL", "https://mirror.example.com")
        monkeypatch.setenv("PODFIX_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("PODFIX_GITHUB_API_URL", "https://ghe.example.com/api/v3/")

        settings = UpdaterSettings.from_env()

        assert settings.cdn_url == "https://mirror.example.com/"
        assert settings.max_attempts == 5
        assert settings.github_api_url == "https://ghe.example.com/api/v3"

    def test_overrides_win(self, monkeypatch):
        """Should prefer keyword overrides and ignore None."""
        monkeypatch.setenv("PODFIX_TIMEOUT", "30")

        assert UpdaterSettings.from_env(timeout=5).timeout == 5
        assert UpdaterSettings.from_env(timeout=None).timeout == 30

    def test_constructor_reads_environment(self, monkeypatch):
        """Should pick up PODFIX_* variables without going through from_env."""
        monkeypatch.setenv("PODFIX_MAX_CONCURRENCY", "2")
        monkeypatch.setenv("PODFIX_SPEC_REPO_BRANCH", "main")

        settings = UpdaterSettings()

        assert settings.max_concurrency == 2
        assert settings.spec_repo_branch == "main"

    def test_custom_prefix(self, monkeypatch):
        """Should read variables under another prefix when asked."""
        monkeypatch.setenv("PODFIX_TIMEOUT", "30")
        monkeypatch.setenv("OTHER_TIMEOUT", "15")

        assert UpdaterSettings.from_env(prefix="OTHER_").timeout == 15

    def test_invalid_environment_value(self, monkeypatch):
        """Should reject an out-of-range value from the environment."""
        monkeypatch.setenv("PODFIX_MAX_ATTEMPTS", "0")
        with pytest.raises(ValidationError):
            UpdaterSettings.from_env()

    def test_invalid_values(self):
        """Should reject out-of-range values."""
        with pytest.raises(ValidationError):
            UpdaterSettings(max_concurrency=0)

    def test_retry_policy_from_settings(self):
        """Should build the retry schedule from settings."""
        policy = RetryPolicy.from_settings(UpdaterSettings(max_attempts=4, backoff_base=1.0, backoff_max=3.0))
        assert policy.schedule() == [1.0, 2.0, 3.0]
