"""
Configuration Management

Centralized configuration using Pydantic Settings. Every field can be set
from the environment with the SLICE_ prefix (or a .env file):

    SLICE_SCHEMA_CACHE_BACKEND=redis
    SLICE_REDIS_URL=redis://localhost:6379/0
    SLICE_CATALOG_PATHS='["catalog/warehouse.yaml"]'
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..schema.cache import RedisSchemaCache, SchemaCache


class Settings(BaseSettings):
    """Planner settings."""

    model_config = SettingsConfigDict(
        env_prefix="SLICE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Schema cache
    schema_cache_enabled: bool = True
    schema_cache_backend: str = Field(default="memory", pattern="^(memory|redis)$")
    redis_url: Optional[str] = None
    schema_cache_prefix: str = "slice:schema:"
    schema_cache_ttl_seconds: Optional[int] = None

    # Planning
    default_join_type: str = Field(default="left", pattern="^(left|inner|right|full)$")

    # Catalog provider
    catalog_name: str = "catalog"
    catalog_paths: List[str] = Field(default_factory=list)
    catalog_connection: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - [%(plan_id)s] %(message)s"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def create_schema_cache(settings: Optional[Settings] = None) -> SchemaCache:
    """Build the schema cache the settings describe."""
    settings = settings or get_settings()

    if settings.schema_cache_backend == "redis":
        return RedisSchemaCache(
            url=settings.redis_url,
            prefix=settings.schema_cache_prefix,
            ttl_seconds=settings.schema_cache_ttl_seconds,
            enabled=settings.schema_cache_enabled,
        )

    return SchemaCache(enabled=settings.schema_cache_enabled)
