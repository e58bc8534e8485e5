from pydantic import Field
from pydantic_settings import BaseSettings


class CacheSettings(BaseSettings):
    """Aggregation cache settings."""

    backend: str = Field(default="memory", alias="TENANTFLOW_CACHE_BACKEND")
    default_ttl_seconds: float = Field(default=60.0, alias="TENANTFLOW_CACHE_TTL")
    key_prefix: str = Field(default="tenantflow:agg:", alias="TENANTFLOW_CACHE_KEY_PREFIX")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }
