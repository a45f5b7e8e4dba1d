"""
tests/test_config.py -- Settings validation.

Settings is instantiated directly (not through get_settings) so each test
sees its own values. Explicit keyword arguments take precedence over the
DEBUG env var set in conftest.py.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings

VALID_KEY = "k" * 32


class TestSecretKey:
    def test_production_requires_secret(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(_env_file=None, debug=False, secret_key="")

    def test_debug_generates_secret(self) -> None:
        settings = Settings(_env_file=None, debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_short_secret_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            Settings(_env_file=None, debug=True, secret_key="too-short")

    def test_explicit_secret_kept(self) -> None:
        assert Settings(_env_file=None, secret_key=VALID_KEY).secret_key == VALID_KEY


class TestDefaults:
    def test_upstream_quota_defaults(self) -> None:
        settings = Settings(_env_file=None, secret_key=VALID_KEY)
        assert settings.jikan_max_per_second == 3
        assert settings.jikan_max_per_minute == 60
        assert settings.jikan_cache_ttl == 3600
        assert settings.refresh_token_expire_seconds == 30 * 24 * 60 * 60
        assert settings.email_verification_required is False
        assert settings.verification_rate_limit == "5/minute"

    def test_per_second_above_per_minute_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, secret_key=VALID_KEY, jikan_max_per_second=10, jikan_max_per_minute=5)

    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("JIKAN_CACHE_TTL", "120")
        monkeypatch.setenv("SECRET_KEY", VALID_KEY)
        get_settings.cache_clear()
        try:
            assert get_settings().jikan_cache_ttl == 120
        finally:
            get_settings.cache_clear()
