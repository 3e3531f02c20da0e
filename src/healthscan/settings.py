"""Application settings and configuration."""

import sys
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_TOKEN_DEFAULTS = {"change-me-in-production", "secret"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "healthscan-waitlist"
    env: str = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    allowed_origins: str = "http://localhost:3000"
    public_base_url: str = "https://healthscan.live"

    # Database (backs the key-value store)
    database_url: str = "sqlite:///./healthscan.db"

    # Confirmation tokens
    token_secret_key: str = "change-me-in-production"
    confirmation_token_ttl_hours: int = 24

    # Signup throttling
    signup_rate_limit: int = Field(default=5, description="Signups per IP per window")
    signup_rate_window_seconds: int = Field(default=3600, description="Fixed window length")
    signup_rate_sweep_probability: float = Field(
        default=0.01,
        description="Fraction of checks that also purge expired windows",
    )
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated peer addresses whose forwarding headers are honored",
    )

    # Tally webhook
    tally_signing_secret: str | None = None
    tally_signature_header: str = "Tally-Signature"
    tally_require_signature: bool = False
    tally_field_mapping_path: Path | None = Field(
        default=None,
        description="JSON file overriding the default Tally field mapping",
    )

    # Email (Resend)
    resend_api_key: str | None = None
    email_from: str = "HealthScan <noreply@healthscan.live>"

    # Slack notifications
    slack_webhook_url: str | None = None
    geo_lookup_url: str = "http://ip-api.com/json/{ip}?fields=country,city,regionName"
    geo_lookup_timeout_seconds: float = 3.0

    # Background side effects
    side_effect_max_attempts: int = 3
    side_effect_backoff_min_seconds: float = 1.0
    side_effect_backoff_max_seconds: float = 10.0

    # Admin
    admin_api_key: str | None = None


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.token_secret_key in _INSECURE_TOKEN_DEFAULTS or len(settings.token_secret_key) < 32:
        print(
            "\n❌  FATAL: TOKEN_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
