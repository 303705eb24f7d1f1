from typing import Optional
from pydantic import Field
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """Read from LOG_LEVEL, LOG_JSON_FORMAT, LOG_FORMAT, LOG_FILE, LOG_MAX_BYTES, LOG_BACKUP_COUNT."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    json_format: bool = Field(default=False)
    format: str = Field(default="%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    file_path: Optional[str] = Field(default=None, validation_alias="LOG_FILE")
    max_bytes: int = Field(default=10 * 1024 * 1024)
    backup_count: int = Field(default=5)


class PipelineSettings(BaseSettings):
    """Batch sizes, error budgets and housekeeping for the ETL stages."""

    model_config = SettingsConfigDict(env_prefix="ETL_")

    extract_batch_size: int = Field(default=1000)
    transform_batch_size: int = Field(default=500)
    load_batch_size: int = Field(default=1000)

    # fraction of total rows that may fail before a stage aborts
    extract_error_threshold: float = Field(default=0.10)
    transform_error_threshold: float = Field(default=0.20)

    cleanup_keep_days: int = Field(default=7)
    run_lock_timeout_minutes: int = Field(default=120)

    csv_encoding: Optional[str] = Field(default=None)  # detect if None
    preview_rows: int = Field(default=5)


class Settings(BaseSettings):
    app_name: str = Field(default="Hospital ETL")
    debug: bool = Field(default=False)

    database_url: str = Field(default="postgresql://user:password@db:5432/hospital_etl")
    database_echo: bool = Field(default=False)

    logging: Optional[LoggingSettings] = Field(default_factory=LoggingSettings)
    pipeline: Optional[PipelineSettings] = Field(default_factory=PipelineSettings)

    model_config = SettingsConfigDict(env_file=".env", extra="allow", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    return Settings()
