from __future__ import annotations

"""
Configuration loader for GitStream.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- Groups ClearNode connection knobs and settlement-session constants.
- Exposes a cached `get_settings()` accessor.

Environment variables:
    CLEARNODE_URL               (ws/wss, optional)     — overrides the sandbox/production default
    CLEARNODE_SANDBOX           (bool, default True)   — pick sandbox endpoint when no URL is set
    OPERATOR_PRIVATE_KEY        (hex, optional)        — distribution operator wallet key
    CLEARNODE_APPLICATION       (str, "GitStream")     — application id sent in auth_request
    CLEARNODE_SCOPE             (str, "console")
    CLEARNODE_AUTH_EXPIRY       (int s, 3600)
    CLEARNODE_REQUEST_TIMEOUT   (float s, 30)
    CLEARNODE_CONNECT_TIMEOUT   (float s, 15)
    CLEARNODE_RECONNECT_DELAY   (float s, 1.0)         — first backoff delay, doubled per attempt
    CLEARNODE_MAX_RECONNECTS    (int, 5)

Sessions:
    SESSION_PROTOCOL            (str, "gitstream-payment-v1")
    SESSION_ASSET               (str, "usdc")
    SESSION_CHALLENGE_PERIOD    (int s, 86400)
    MIN_DISTRIBUTION_AMOUNT     (int, 10000000)        — smallest unit (USDC has 6 decimals)

Logging:
    LOG_LEVEL                   (str, "INFO")
    LOG_FORMAT                  ("json" | "console")
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CLEARNODE_URLS = {
    "production": "wss://clearnet.yellow.com/ws",
    "sandbox": "wss://clearnet-sandbox.yellow.com/ws",
}


def _ensure_scheme(url: Optional[str], allowed: tuple[str, ...]) -> Optional[str]:
    if not url:
        return url
    lower = url.lower()
    if not any(lower.startswith(f"{sch}://") for sch in allowed):
        raise ValueError(f"URL must start with {allowed}, got: {url!r}")
    return url


class Settings(BaseSettings):
    # ClearNode connection
    clearnode_url: Optional[str] = Field(default=None, alias="CLEARNODE_URL")
    use_sandbox: bool = Field(default=True, alias="CLEARNODE_SANDBOX")
    operator_private_key: Optional[SecretStr] = Field(default=None, alias="OPERATOR_PRIVATE_KEY")
    application: str = Field(default="GitStream", alias="CLEARNODE_APPLICATION")
    auth_scope: str = Field(default="console", alias="CLEARNODE_SCOPE")
    auth_expiry_seconds: int = Field(default=3600, ge=60, alias="CLEARNODE_AUTH_EXPIRY")
    request_timeout: float = Field(default=30.0, gt=0, alias="CLEARNODE_REQUEST_TIMEOUT")
    connect_timeout: float = Field(default=15.0, gt=0, alias="CLEARNODE_CONNECT_TIMEOUT")
    reconnect_base_delay: float = Field(default=1.0, ge=0, alias="CLEARNODE_RECONNECT_DELAY")
    max_reconnect_attempts: int = Field(default=5, ge=0, alias="CLEARNODE_MAX_RECONNECTS")

    # Settlement sessions
    session_protocol: str = Field(default="gitstream-payment-v1", alias="SESSION_PROTOCOL")
    session_asset: str = Field(default="usdc", alias="SESSION_ASSET")
    challenge_period: int = Field(default=86400, ge=0, alias="SESSION_CHALLENGE_PERIOD")
    min_distribution_amount: int = Field(default=10_000_000, ge=0, alias="MIN_DISTRIBUTION_AMOUNT")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    @field_validator("clearnode_url", mode="before")
    @classmethod
    def _check_ws_scheme(cls, v):
        return _ensure_scheme(v or None, ("ws", "wss"))

    @field_validator("log_format", mode="before")
    @classmethod
    def _normalize_format(cls, v):
        s = str(v or "json").strip().lower()
        return s if s in ("json", "console") else "json"

    @property
    def resolved_clearnode_url(self) -> str:
        if self.clearnode_url:
            return self.clearnode_url
        return CLEARNODE_URLS["sandbox" if self.use_sandbox else "production"]

    def operator_key(self) -> Optional[str]:
        if self.operator_private_key is None:
            return None
        return self.operator_private_key.get_secret_value() or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # pydantic-settings will read .env automatically


__all__ = ["Settings", "CLEARNODE_URLS", "get_settings"]
