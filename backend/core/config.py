"""
Application settings

Environment-driven configuration for the publishing engine. Business constants
(publish cost, reward) live here so the ledger only ever executes the signed
deltas its callers hand it.
"""
import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Publishing engine settings loaded from environment variables / .env"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)

    # Runtime
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    sentry_dsn: Optional[str] = Field(default=None)
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0, le=1)
    secret_key: str = Field(default="dev-secret-change-me")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60 * 24)
    allowed_origins: str = Field(default="")

    # Database
    database_url: str = Field(default="sqlite:///./schoolchamps.db")
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=20)

    # Token encryption at rest (comma separated Fernet keys, newest first)
    token_encryption_key: Optional[str] = Field(default=None)

    # Credit economics
    publish_cost_coins: int = Field(default=99, gt=0)
    publish_reward_coins: int = Field(default=50, ge=0)
    coins_per_purchase: int = Field(default=99, gt=0)
    paise_per_coin: int = Field(default=100, gt=0)
    ledger_cas_retries: int = Field(default=5, ge=1)

    # WordPress
    wordpress_base_url: str = Field(default="")
    wordpress_username: str = Field(default="")
    wordpress_app_password: str = Field(default="")
    wordpress_default_status: str = Field(default="publish")

    # Social platforms
    facebook_app_id: str = Field(default="")
    facebook_app_secret: str = Field(default="")
    linkedin_client_id: str = Field(default="")
    linkedin_client_secret: str = Field(default="")
    linkedin_redirect_uri: str = Field(default="")
    token_refresh_window_hours: int = Field(default=24, ge=0)
    max_token_refresh_failures: int = Field(default=3, ge=1)
    fanout_max_concurrency: int = Field(default=3, ge=1)

    # Payments (Razorpay style order/verify)
    razorpay_key_id: str = Field(default="")
    razorpay_key_secret: str = Field(default="")

    # External draft generator
    openai_api_key: str = Field(default="")
    draft_generator_model: str = Field(default="gpt-4o-mini")

    # Celery
    redis_url: str = Field(default="redis://localhost:6379/0")
    celery_broker_url: Optional[str] = Field(default=None)
    celery_result_backend: Optional[str] = Field(default=None)

    def get_database_url(self) -> str:
        """Normalize legacy postgres:// URLs for SQLAlchemy"""
        url = self.database_url
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    def get_celery_broker_url(self) -> str:
        return self.celery_broker_url or self.redis_url

    def get_celery_result_backend(self) -> str:
        return self.celery_result_backend or self.redis_url

    def get_cors_origins(self) -> List[str]:
        if self.allowed_origins:
            return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]
        if self.environment == "development":
            return ["*"]
        return []

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings(environment=os.getenv("ENVIRONMENT", "development").lower())
