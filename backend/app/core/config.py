"""
Opinion Sync Engine - Configuration Module
==========================================
All configuration is loaded from environment variables.
Plan limits and timeouts default to the values the product ships with.
"""

import os
from datetime import datetime
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    # App
    app_name: str = "Opinion Sync Engine"
    app_env: str = "development"
    app_debug: bool = False
    log_level: str = "INFO"

    # Primary store (PostgreSQL)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "opinion_sync"
    postgres_user: str = "opinion_sync"
    postgres_password: str = ""

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Replica store / realtime (Redis)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    replica_key_prefix: str = "replica:"
    realtime_channel_prefix: str = "realtime:"

    @property
    def redis_url(self) -> str:
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Replica writes
    replica_operation_timeout_seconds: float = 5.0
    replica_write_attempts: int = 2

    # Bulk ingestion
    bulk_batch_size: int = 10
    bulk_max_reported_errors: int = 100
    bulk_sentiment_timeout_seconds: float = 15.0

    # Sentiment / analysis
    sentiment_timeout_seconds: float = 30.0
    analysis_timeout_seconds: float = 600.0

    # Period analysis limits (pro and non-trial users)
    analysis_limit_total_daily: int = 10
    analysis_limit_total_monthly: int = 100
    trial_analysis_limit_total_daily: int = 7
    trial_analysis_limit_total_monthly: int = 50

    # Plan limits (-1 = unlimited)
    free_plan_max_projects: int = 1
    free_plan_max_analyses_total: int = 1
    free_plan_max_opinions_per_project: int = 50
    trial_plan_max_projects: int = 5
    trial_plan_max_analyses_total: int = 50
    trial_plan_max_opinions_per_project: int = 150
    pro_plan_max_projects: int = -1
    pro_plan_max_analyses_total: int = -1
    pro_plan_max_opinions_per_project: int = -1

    trial_duration_days: int = 14
    freemium_launch_date: datetime = datetime(2025, 7, 22)

    def validate_limits(self) -> list[str]:
        """Return a list of out-of-range settings (empty when valid)."""
        errors: list[str] = []
        if self.analysis_limit_total_daily < 0:
            errors.append("ANALYSIS_LIMIT_TOTAL_DAILY must be non-negative")
        if self.analysis_limit_total_monthly < 0:
            errors.append("ANALYSIS_LIMIT_TOTAL_MONTHLY must be non-negative")
        if self.free_plan_max_projects < 0:
            errors.append("FREE_PLAN_MAX_PROJECTS must be non-negative")
        if self.trial_plan_max_projects < 0:
            errors.append("TRIAL_PLAN_MAX_PROJECTS must be non-negative")
        if not 1 <= self.trial_duration_days <= 365:
            errors.append("TRIAL_DURATION_DAYS must be between 1 and 365")
        if not 1 <= self.analysis_timeout_seconds <= 3600:
            errors.append("ANALYSIS_TIMEOUT_SECONDS must be between 1 and 3600")
        if not 1 <= self.replica_operation_timeout_seconds <= 60:
            errors.append("REPLICA_OPERATION_TIMEOUT_SECONDS must be between 1 and 60")
        if not 1 <= self.bulk_batch_size <= 100:
            errors.append("BULK_BATCH_SIZE must be between 1 and 100")
        if self.replica_write_attempts < 1:
            errors.append("REPLICA_WRITE_ATTEMPTS must be at least 1")
        return errors

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        env_prefix = "OPINION_SYNC_"


def _load_dotenv_pairs(dotenv_path: str = ".env") -> dict[str, str]:
    path = Path(dotenv_path)
    if not path.exists():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            values[key] = value
    return values


def _bootstrap_prefixed_env() -> None:
    """Populate OPINION_SYNC_ vars from legacy unprefixed keys."""
    legacy_pairs = _load_dotenv_pairs(".env")
    prefix = "OPINION_SYNC_"

    for field_name in Settings.model_fields.keys():
        legacy_key = field_name.upper()
        prefixed_key = f"{prefix}{legacy_key}"

        if os.getenv(prefixed_key):
            continue

        legacy_value = os.getenv(legacy_key)
        if legacy_value is not None:
            os.environ[prefixed_key] = legacy_value
            continue

        if legacy_key in legacy_pairs:
            os.environ[prefixed_key] = legacy_pairs[legacy_key]


_bootstrap_prefixed_env()


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
