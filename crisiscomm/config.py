"""
Crisis Communication Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
Read once at process start and injected into senders and services.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "Crisis Communication"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8002, alias="API_PORT")
    api_prefix: str = "/api/v1"
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        alias="CORS_ORIGINS",
    )

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./crisiscomm.db",
        alias="DATABASE_URL",
    )
    db_pool_recycle: int = Field(default=3600, alias="DB_POOL_RECYCLE")

    # ── Email (SMTP) ──────────────────────────────────────────────────────
    smtp_host: str = Field(default="", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_user: str = Field(default="", alias="SMTP_USER")
    smtp_password: str = Field(default="", alias="SMTP_PASS")
    smtp_from: str = Field(default="noreply@crisis-comm.com", alias="SMTP_FROM")

    # ── Chat webhooks ─────────────────────────────────────────────────────
    slack_webhook_url: str = Field(default="", alias="SLACK_WEBHOOK_URL")
    teams_webhook_url: str = Field(default="", alias="TEAMS_WEBHOOK_URL")

    # ── SMS (Twilio) ──────────────────────────────────────────────────────
    twilio_account_sid: str = Field(default="", alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: str = Field(default="", alias="TWILIO_PHONE_NUMBER")

    # ── Generic webhook ───────────────────────────────────────────────────
    webhook_url: str = Field(default="", alias="WEBHOOK_URL")

    # ── External Services ─────────────────────────────────────────────────
    scoring_service_url: str = Field(default="", alias="SCORING_SERVICE_URL")
    scoring_api_key: str = Field(default="", alias="SCORING_API_KEY")
    scoring_timeout_seconds: float = Field(default=10.0, alias="SCORING_TIMEOUT_SECONDS")

    # ── Dispatch ──────────────────────────────────────────────────────────
    dispatch_timeout_seconds: float = Field(default=10.0, alias="DISPATCH_TIMEOUT_SECONDS")

    # ── Severity bands (relevance score 0-1) ─────────────────────────────
    severity_critical_threshold: float = Field(default=0.8, alias="SEVERITY_CRITICAL_THRESHOLD")
    severity_high_threshold: float = Field(default=0.6, alias="SEVERITY_HIGH_THRESHOLD")
    severity_medium_threshold: float = Field(default=0.4, alias="SEVERITY_MEDIUM_THRESHOLD")

    # ── Escalation monitor ────────────────────────────────────────────────
    escalation_sweep_minutes: int = Field(default=5, alias="ESCALATION_SWEEP_MINUTES")

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url
