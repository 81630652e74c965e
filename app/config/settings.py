import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    ⚠️ WARNING: SQLite is NOT suitable for production deployments!
    - The job uniqueness guarantee relies on the (plan_id, scheduled_date) constraint,
      which SQLite honours, but concurrent sweeps will serialize on the file lock
    - Use PostgreSQL by setting DATABASE_URL environment variable
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        is_production = bool(os.getenv("RENDER") or os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("DYNO"))
        if db_url.startswith("sqlite://") and is_production:
            logger.error(
                "⚠️ CRITICAL: SQLite detected in production environment! "
                "Set DATABASE_URL to a PostgreSQL connection string."
            )
        return db_url

    # Use absolute path for SQLite (LOCAL DEVELOPMENT ONLY)
    db_path = Path(__file__).parent.parent.parent / "fieldservice.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(
        f"⚠️ Using SQLite database (LOCAL DEV ONLY): {db_url}\n"
        "⚠️ Set DATABASE_URL environment variable to use PostgreSQL in production."
    )
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON", description="Write LOG_FILE as JSON lines")

    default_horizon_days: int = Field(
        default=56,
        validation_alias="DEFAULT_HORIZON_DAYS",
        description="How many days ahead jobs are materialized when no horizon is given",
    )
    min_sla_minutes: int = Field(default=120, validation_alias="MIN_SLA_MINUTES")
    sla_window_multiplier: float = Field(default=1.5, validation_alias="SLA_WINDOW_MULTIPLIER")
    default_service_duration_minutes: int = Field(default=45, validation_alias="DEFAULT_SERVICE_DURATION_MINUTES")
    default_window_start: str = Field(default="08:00", validation_alias="DEFAULT_WINDOW_START")
    default_window_end: str = Field(default="17:00", validation_alias="DEFAULT_WINDOW_END")
    billing_day_of_month: int = Field(default=25, validation_alias="BILLING_DAY_OF_MONTH")

    sweep_enabled: bool = Field(
        default=False,
        validation_alias="HORIZON_SWEEP_ENABLED",
        description="Run the periodic horizon sweep inside the API process",
    )
    sweep_interval_hours: int = Field(default=24, validation_alias="HORIZON_SWEEP_INTERVAL_HOURS")
    cron_secret: str = Field(
        default="",
        validation_alias="CRON_SECRET",
        description="Shared secret expected in X-Cron-Secret by the internal generation endpoint",
    )
    followups_via_celery: bool = Field(
        default=False,
        validation_alias="FOLLOWUPS_VIA_CELERY",
        description="Send post-create/resume generation to Celery instead of a local thread",
    )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("default_horizon_days")
    @classmethod
    def validate_horizon(cls, value: int) -> int:
        if not 1 <= value <= 366:
            raise ValueError(f"DEFAULT_HORIZON_DAYS must be between 1 and 366, got {value}")
        return value

    @field_validator("billing_day_of_month")
    @classmethod
    def validate_billing_day(cls, value: int) -> int:
        if not 1 <= value <= 28:
            raise ValueError(f"BILLING_DAY_OF_MONTH must be between 1 and 28, got {value}")
        return value

    @field_validator("cron_secret")
    @classmethod
    def validate_cron_secret(cls, value: str) -> str:
        """Warn when the cron endpoint cannot be used."""
        if not value:
            logger.warning(
                "⚠️ CRON_SECRET is not set. The internal job generation endpoint will reject every call. "
                "Set it in .env file or environment variables to enable external cron triggers."
            )
        return value


settings = Settings()
