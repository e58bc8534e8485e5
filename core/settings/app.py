# core/settings/app.py
from functools import lru_cache

from core.settings.sections.alerts import SlackSettings
from core.settings.sections.cache import CacheSettings
from core.settings.sections.database import DatabaseSettings
from core.settings.sections.orchestrator import OrchestratorSettings
from core.settings.sections.permissions import PermissionSettings
from core.settings.sections.redis import RedisSettings


class AppSettings:
    """
    Central application settings aggregator.
    Settings are loaded lazily inside __init__
    to prevent eager evaluation at import time.
    """

    def __init__(self):
        self.orchestrator = OrchestratorSettings()
        self.permissions = PermissionSettings()
        self.cache = CacheSettings()
        self.redis = RedisSettings()
        self.database = DatabaseSettings()
        self.slack = SlackSettings()


@lru_cache()
def get_app_settings() -> AppSettings:
    """Return cached global settings for the entire app."""
    return AppSettings()
