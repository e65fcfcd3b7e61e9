from functools import lru_cache
from typing import Any, Literal
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application Configuration
    API_NAME: str = "Knowledge Connectors"
    API_SUMMARY: str = (
        "Syncs content from external knowledge sources into a unified item model"
    )
    CONNECTORS_VERSION: str = "v0.1.x"

    CONNECTORS_API_KEY: str | None = None

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    USER_AGENT: str = "KnowledgeConnectors"

    CORS_ENABLED: bool = False
    CORS_ORIGINS: list[str] = ["*"]

    # Outbound Requests
    DEFAULT_REQUESTS_PER_MINUTE: int = 60
    REQUEST_TIMEOUT_SECONDS: int = 60
    RATE_LIMIT_MAX_RETRIES: int = 5
    RATE_LIMIT_MAX_WAIT_SECONDS: float = 300
    DEFAULT_RETRY_AFTER_SECONDS: float = 60

    # Item Processing
    EXCERPT_LENGTH: int = 200
    DEFAULT_BATCH_SIZE: int = 100

    # Vendor APIs
    NOTION_API_VERSION: str = "2022-06-28"

    # OpenTelemetry Settings
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "knowledge-connectors"

    @field_validator("LOG_LEVEL", mode="before")
    def normalize_log_level(cls, v: Any):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    def validate_list_from_string(cls, v: Any):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",")]
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings():
    return Settings()
