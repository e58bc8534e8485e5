from pydantic import Field
from pydantic_settings import BaseSettings


class SlackSettings(BaseSettings):
    """
    Slack operator alert settings.
    Loaded from .env file with exact variable name matching.
    """

    enabled: bool = Field(default=False, alias="TENANTFLOW_SLACK_ENABLED")
    webhook_url: str = Field(default="", alias="SLACK_WEBHOOK_URL")
    prefix: str = Field(default="[TENANTFLOW]", alias="TENANTFLOW_SLACK_PREFIX")
    min_severity: int = Field(default=50, alias="TENANTFLOW_SLACK_MIN_SEVERITY")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }
