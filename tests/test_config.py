"""Tests for core/config.py (Settings)."""

import pydantic
import pytest

from core.config import Settings

KEY = "k" * 32


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **{"secret_key": KEY, **overrides})


def test_defaults() -> None:
    settings = _settings()
    assert settings.access_token_ttl_seconds == 900
    assert settings.refresh_token_ttl_seconds == 14 * 24 * 3600
    assert settings.reset_token_ttl_seconds == 3600
    assert settings.cors_origins == []
    assert settings.jwt_key_id == "primary"


def test_short_secret_key_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(secret_key="too-short")


def test_wildcard_cors_origin_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(cors_origins=["https://app.example.com", "*"])


def test_log_level_is_normalized() -> None:
    assert _settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(pydantic.ValidationError):
        _settings(log_level="chatty")


def test_reset_ttl_capped_at_one_hour() -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(reset_token_ttl_seconds=7200)


def test_refresh_ttl_must_exceed_access_ttl() -> None:
    with pytest.raises(pydantic.ValidationError):
        _settings(access_token_ttl_seconds=3600, refresh_token_ttl_seconds=3600)


class TestKeyRing:
    def test_verification_keys_include_active_and_previous(self) -> None:
        settings = _settings(jwt_key_id="2026", jwt_previous_keys={"2025": "p" * 32})
        assert settings.verification_keys == {"2025": "p" * 32, "2026": KEY}

    def test_active_kid_cannot_be_a_previous_key(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            _settings(jwt_key_id="2026", jwt_previous_keys={"2026": "p" * 32})

    def test_short_previous_key_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            _settings(jwt_previous_keys={"old": "short"})
