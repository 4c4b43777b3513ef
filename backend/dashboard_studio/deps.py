"""Dependency providers and settings management."""

from functools import lru_cache
from typing import AsyncGenerator, List, Optional

from fastapi import Depends
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services.aggregation_client import AggregationClient


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    DATABASE_URL: Optional[str] = None
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # External aggregation endpoints (/api/dashboard/aggregate-data, ...)
    AGGREGATION_API_BASE_URL: str = "http://localhost:3000"
    AGGREGATION_API_TIMEOUT_SECONDS: float = 30.0

    # Schema used when an ETL run does not record its destination schema
    DEFAULT_ETL_SCHEMA: str = "etl_output"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


async def get_aggregation_client(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[AggregationClient, None]:
    """Yield an aggregation client for the duration of one request."""
    client = AggregationClient(
        base_url=settings.AGGREGATION_API_BASE_URL,
        timeout=settings.AGGREGATION_API_TIMEOUT_SECONDS,
    )
    try:
        yield client
    finally:
        await client.aclose()
