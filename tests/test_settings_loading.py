"""
Test settings loading from the environment.

Every key documented in .env.example must map to exactly one settings
field, and every field must come out properly typed.
"""
from __future__ import annotations

from pathlib import Path
import re

import pytest

# 1) Import api.dependencies so dotenv loads exactly once (canonical location).
import api.dependencies  # noqa: F401

from core.settings import get_app_settings


def _parse_env(env_path: Path) -> dict[str, str]:
    text = env_path.read_text(encoding="utf-8", errors="replace")
    values: dict[str, str] = {}
    for line in text.splitlines():
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        if s.startswith("export "):
            s = s[len("export ") :].strip()
        if "=" not in s:
            continue
        k, v = s.split("=", 1)
        k = k.strip()
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", k):
            continue
        # first occurrence wins
        values.setdefault(k, v.strip())
    return values


def _collect_alias_map(model) -> dict[str, str]:
    """
    Return map: ENV_ALIAS -> field_name for a Pydantic model.
    """
    alias_map: dict[str, str] = {}
    for field_name, field in type(model).model_fields.items():
        alias = field.alias
        if alias:
            alias_map[alias] = field_name
    return alias_map


def _modules(settings) -> dict:
    return {
        "orchestrator": settings.orchestrator,
        "permissions": settings.permissions,
        "cache": settings.cache,
        "redis": settings.redis,
        "database": settings.database,
        "slack": settings.slack,
    }


@pytest.fixture
def fresh_settings():
    get_app_settings.cache_clear()
    yield
    get_app_settings.cache_clear()


def test_every_env_key_is_mapped_and_non_none(monkeypatch, fresh_settings):
    repo_root = Path(__file__).resolve().parents[1]
    env = _parse_env(repo_root / ".env.example")
    for key, value in env.items():
        monkeypatch.setenv(key, value)

    settings = get_app_settings()
    modules = _modules(settings)

    alias_to_locator: dict[str, tuple[str, str]] = {}
    for module_name, model in modules.items():
        for alias, field_name in _collect_alias_map(model).items():
            if alias in alias_to_locator:
                pytest.fail(f"Duplicate env alias mapped twice: {alias}")
            alias_to_locator[alias] = (module_name, field_name)

    missing = [k for k in env if k not in alias_to_locator]
    assert not missing, f"Unmapped env keys: {missing}"
    undocumented = [alias for alias in alias_to_locator if alias not in env]
    assert not undocumented, f"Settings missing from .env.example: {undocumented}"

    for env_key in env:
        module_name, field_name = alias_to_locator[env_key]
        model = modules[module_name]

        # Ensure alias matches env key
        assert type(model).model_fields[field_name].alias == env_key

        # Ensure field is not None
        assert getattr(model, field_name) is not None


def test_environment_overrides_are_typed(monkeypatch, fresh_settings):
    monkeypatch.setenv("TENANTFLOW_WORKER_COUNT", "8")
    monkeypatch.setenv("TENANTFLOW_HIGH_PRIVILEGE_MAX_STALENESS", "5")
    monkeypatch.setenv("TENANTFLOW_HIGH_PRIVILEGE_ACTIONS", '["tenants:delete"]')
    monkeypatch.setenv("TENANTFLOW_REDIS_ENABLED", "true")

    settings = get_app_settings()

    assert settings.orchestrator.worker_count == 8
    assert settings.permissions.high_privilege_max_staleness_seconds == 5.0
    assert settings.permissions.high_privilege_actions == ["tenants:delete"]
    assert settings.redis.enabled is True


def test_defaults_run_in_memory(monkeypatch, fresh_settings):
    for key in ("TENANTFLOW_EXECUTION_BACKEND", "TENANTFLOW_CACHE_BACKEND", "TENANTFLOW_REDIS_ENABLED"):
        monkeypatch.delenv(key, raising=False)

    settings = get_app_settings()

    assert settings.orchestrator.backend == "memory"
    assert settings.cache.backend == "memory"
    assert settings.redis.enabled is False
    assert settings.permissions.high_privilege_max_staleness_seconds == 0.0
