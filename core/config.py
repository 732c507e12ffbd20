"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.
The auth/ engine never calls get_settings() either: api/main.py reads the
settings once and passes each value into the component that needs it at
construction time.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). List and dict fields are parsed from
      JSON (e.g. CORS_ORIGINS='["https://app.example.com"]').

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved (key ring consistency, TTL ordering).

Security notes:
  SECRET_KEY has no default and no generated fallback. A missing key is a hard
  startup failure in every environment; a key shorter than 32 characters is
  rejected outright. The same rule applies to every verification-only key in
  JWT_PREVIOUS_KEYS.

  CORS_ORIGINS defaults to an empty list, which means no cross-origin access.
  There is no implicit "allow localhost" origin.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_MIN_KEY_LENGTH = 32
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a safe default. Tests set SECRET_KEY in
    tests/conftest.py before any project import.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Signing keys
    # ------------------------------------------------------------------

    secret_key: str = Field(min_length=_MIN_KEY_LENGTH)
    jwt_key_id: str = Field(default="primary", min_length=1, max_length=64)
    # Verification-only keys from earlier key epochs: {"kid": "key"}.
    jwt_previous_keys: dict[str, str] = Field(default_factory=dict)

    # ------------------------------------------------------------------
    # Token lifetimes (seconds)
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = Field(default=15 * 60, ge=60, le=60 * 60)
    refresh_token_ttl_seconds: int = Field(default=14 * 24 * 3600, ge=24 * 3600, le=30 * 24 * 3600)
    verification_token_ttl_seconds: int = Field(default=24 * 3600, ge=5 * 60, le=7 * 24 * 3600)
    reset_token_ttl_seconds: int = Field(default=3600, ge=5 * 60, le=3600)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    default_role: str = Field(default="user", min_length=1)

    # ------------------------------------------------------------------
    # Storage and collaborators
    # ------------------------------------------------------------------

    database_url: str = Field(default="sqlite:///authgate.db", min_length=1)
    public_base_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # HTTP transport
    # ------------------------------------------------------------------

    cors_origins: list[str] = Field(default_factory=list)
    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])
    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"
    recovery_rate_limit: str = "5/minute"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}")
        return level

    @field_validator("cors_origins")
    @classmethod
    def reject_wildcard_origin(cls, value: list[str]) -> list[str]:
        """A wildcard origin would combine with bearer headers into open CORS."""
        if "*" in value:
            raise ValueError("CORS_ORIGINS may not contain '*'; list the allowed origins explicitly.")
        return value

    @model_validator(mode="after")
    def validate_key_ring(self) -> "Settings":
        """Reject short or colliding verification keys.

        The active key id must not also appear among the previous keys,
        otherwise a token could be verified against the wrong secret.
        """
        if self.jwt_key_id in self.jwt_previous_keys:
            raise ValueError("JWT_PREVIOUS_KEYS must not contain the active JWT_KEY_ID.")
        for kid, key in self.jwt_previous_keys.items():
            if len(key) < _MIN_KEY_LENGTH:
                raise ValueError(f"JWT_PREVIOUS_KEYS[{kid!r}] must be at least {_MIN_KEY_LENGTH} characters.")
        if self.refresh_token_ttl_seconds <= self.access_token_ttl_seconds:
            raise ValueError("REFRESH_TOKEN_TTL_SECONDS must exceed ACCESS_TOKEN_TTL_SECONDS.")
        if self.jwt_previous_keys:
            logger.info("Accepting %d previous JWT verification key(s)", len(self.jwt_previous_keys))
        return self

    @property
    def verification_keys(self) -> dict[str, str]:
        """Every key the token validator may accept, keyed by kid."""
        return {**self.jwt_previous_keys, self.jwt_key_id: self.secret_key}


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
