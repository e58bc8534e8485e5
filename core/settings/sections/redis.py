from pydantic import Field
from pydantic_settings import BaseSettings


class RedisSettings(BaseSettings):
    """Redis connection and invalidation stream settings."""

    enabled: bool = Field(default=False, alias="TENANTFLOW_REDIS_ENABLED")
    url: str = Field(default="redis://localhost:6379/0", alias="TENANTFLOW_REDIS_URL")
    permission_stream: str = Field(
        default="tenantflow:permissions:stream", alias="TENANTFLOW_PERMISSION_STREAM"
    )
    cache_stream: str = Field(default="tenantflow:cache:stream", alias="TENANTFLOW_CACHE_STREAM")
    consumer_group: str = Field(default="tenantflow:orchestrator", alias="TENANTFLOW_CONSUMER_GROUP")
    consumer_name: str = Field(default="orchestrator-1", alias="TENANTFLOW_CONSUMER_NAME")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }
