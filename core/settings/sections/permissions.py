from pydantic import Field
from pydantic_settings import BaseSettings


class PermissionSettings(BaseSettings):
    """
    Permission cache settings.

    High-privilege actions are re-validated against the authorization store
    whenever the cached decision is older than ``high_privilege_max_staleness_seconds``
    (0 bypasses the cache entirely).
    """

    decision_ttl_seconds: float = Field(default=30.0, alias="TENANTFLOW_PERMISSION_TTL")
    context_ttl_seconds: float = Field(default=30.0, alias="TENANTFLOW_CONTEXT_TTL")
    high_privilege_max_staleness_seconds: float = Field(
        default=0.0, alias="TENANTFLOW_HIGH_PRIVILEGE_MAX_STALENESS"
    )
    high_privilege_actions: list[str] = Field(
        default=["tenants:delete", "permissions:grant", "roles:assign"],
        alias="TENANTFLOW_HIGH_PRIVILEGE_ACTIONS",
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }
