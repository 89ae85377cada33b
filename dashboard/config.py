from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Literal, Optional

from dashboard.core.config import (
    DEFAULT_PIPELINE_TRIGGER_URL,
    PIPELINE_HARD_TIMEOUT,
    PIPELINE_REQUEST_TIMEOUT,
    INGESTING_TICK,
    JOBS_TABLE,
    FILES_TABLE,
)

class Settings(BaseSettings):
    # Basic environment settings
    ENVIRONMENT: str = Field("development", env="ENVIRONMENT")
    HOST: str = Field("0.0.0.0", env="HOST")
    PORT: int = Field(8000, env="PORT")

    # CORS settings: Allowed origins should be provided as a comma-separated list in the env var.
    ALLOWED_ORIGINS: List[str] = Field(default=["http://localhost", "http://127.0.0.1"], env="ALLOWED_ORIGINS")

    # Logging configuration
    LOG_LEVEL: str = Field("INFO", env="LOG_LEVEL")

    # Pipeline trigger webhook
    PIPELINE_TRIGGER_URL: str = Field(DEFAULT_PIPELINE_TRIGGER_URL, env="PIPELINE_TRIGGER_URL")
    PIPELINE_REQUEST_TIMEOUT_SECONDS: float = Field(PIPELINE_REQUEST_TIMEOUT, env="PIPELINE_REQUEST_TIMEOUT_SECONDS")

    # Run tracking
    PIPELINE_HARD_TIMEOUT_SECONDS: float = Field(PIPELINE_HARD_TIMEOUT, env="PIPELINE_HARD_TIMEOUT_SECONDS")
    INGESTING_TICK_SECONDS: float = Field(INGESTING_TICK, env="INGESTING_TICK_SECONDS")

    # Datastore, change feed and auth provider
    DATASTORE_BACKEND: Literal["memory", "supabase"] = Field("memory", env="DATASTORE_BACKEND")
    SUPABASE_URL: Optional[str] = Field(None, env="SUPABASE_URL")
    SUPABASE_KEY: Optional[str] = Field(None, env="SUPABASE_KEY")
    JOBS_TABLE: str = Field(JOBS_TABLE, env="JOBS_TABLE")
    FILES_TABLE: str = Field(FILES_TABLE, env="FILES_TABLE")
    WORKSPACE_CACHE_TTL: int = Field(3600, env="WORKSPACE_CACHE_TTL")

    # Email notification settings
    SENDGRID_API_KEY: Optional[str] = Field(None, env="SENDGRID_API_KEY")
    FROM_EMAIL: Optional[str] = Field(None, env="FROM_EMAIL")
    NOTIFY_EMAIL: Optional[str] = Field(None, env="NOTIFY_EMAIL")

    @field_validator("ALLOWED_ORIGINS", mode="before")
    def assemble_allowed_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

# Create a single instance of the settings that can be imported anywhere in the project.
settings = Settings()
