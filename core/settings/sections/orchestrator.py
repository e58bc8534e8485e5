from pydantic import Field
from pydantic_settings import BaseSettings


class OrchestratorSettings(BaseSettings):
    """
    Worker pool, lease and default retry settings.
    Loaded from .env file with exact variable name matching.
    """

    worker_count: int = Field(default=4, alias="TENANTFLOW_WORKER_COUNT")
    lease_seconds: float = Field(default=30.0, alias="TENANTFLOW_LEASE_SECONDS")
    poll_interval_seconds: float = Field(default=0.5, alias="TENANTFLOW_POLL_INTERVAL_SECONDS")
    max_execution_age_seconds: float = Field(default=3600.0, alias="TENANTFLOW_MAX_EXECUTION_AGE_SECONDS")
    backend: str = Field(default="memory", alias="TENANTFLOW_EXECUTION_BACKEND")
    direct_service_urls: dict[str, str] = Field(default_factory=dict, alias="TENANTFLOW_DIRECT_SERVICE_URLS")

    default_max_attempts: int = Field(default=3, alias="TENANTFLOW_RETRY_MAX_ATTEMPTS")
    default_initial_interval_seconds: float = Field(default=1.0, alias="TENANTFLOW_RETRY_INITIAL_INTERVAL")
    default_backoff_coefficient: float = Field(default=2.0, alias="TENANTFLOW_RETRY_BACKOFF_COEFFICIENT")
    default_max_interval_seconds: float = Field(default=60.0, alias="TENANTFLOW_RETRY_MAX_INTERVAL")
    default_attempt_timeout_seconds: float = Field(default=30.0, alias="TENANTFLOW_ATTEMPT_TIMEOUT")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }
