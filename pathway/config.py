from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    jwt_secret: str = Field("test-jwt-secret", alias="JWT_SECRET")
    jwt_audience: str = Field("authenticated", alias="JWT_AUDIENCE")
    admin_email: str | None = Field(None, alias="ADMIN_EMAIL")

    database_url: str = Field("sqlite:////tmp/pathway_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    redis_url: str = Field("redis://localhost:6379", alias="REDIS_URL")
    trusted_proxies: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "testclient"]
    )
    ip_requests_per_minute: int = Field(30, alias="IP_REQUESTS_PER_MINUTE")
    subject_requests_per_minute: int = Field(120, alias="SUBJECT_REQUESTS_PER_MINUTE")

    chat_daily_limit: int = Field(15, alias="CHAT_DAILY_LIMIT")
    essay_daily_limit: int = Field(10, alias="ESSAY_DAILY_LIMIT")
    recommender_daily_limit: int = Field(5, alias="RECOMMENDER_DAILY_LIMIT")
    anonymous_weekly_limit: int = Field(1, alias="ANONYMOUS_WEEKLY_LIMIT")
    usage_limits_source: Literal["daily", "plan"] = Field(
        "daily",
        alias="USAGE_LIMITS_SOURCE",
        description="Quota table used for authenticated users",
    )

    gemini_api_key: str | None = Field(None, alias="GEMINI_API_KEY")
    gemini_model: str = Field("gemini-2.0-flash", alias="GEMINI_MODEL")
    gemini_api_url: str = Field(DEFAULT_GEMINI_URL, alias="GEMINI_API_URL")

    stripe_secret_key: str | None = Field(None, alias="STRIPE_SECRET_KEY")
    stripe_api_url: str = Field("https://api.stripe.com/v1", alias="STRIPE_API_URL")

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )
