"""Pytest configuration and fixtures for integration tests."""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from api import dependencies
from api.main import app
from core.settings import get_app_settings


TENANT = "tenant-a"


@pytest.fixture
def test_client(monkeypatch) -> Generator[TestClient, None, None]:
    """FastAPI test client over a fresh in-memory orchestration core."""
    monkeypatch.setenv("TENANTFLOW_EXECUTION_BACKEND", "memory")
    monkeypatch.setenv("TENANTFLOW_CACHE_BACKEND", "memory")
    monkeypatch.setenv("TENANTFLOW_REDIS_ENABLED", "false")
    monkeypatch.setenv("TENANTFLOW_SLACK_ENABLED", "false")
    monkeypatch.setenv("TENANTFLOW_WORKER_COUNT", "2")
    monkeypatch.setenv("TENANTFLOW_POLL_INTERVAL_SECONDS", "0.01")
    monkeypatch.setenv("TENANTFLOW_RETRY_INITIAL_INTERVAL", "0")

    get_app_settings.cache_clear()
    dependencies.reset_dependencies()

    authz = dependencies.get_authorization_store()
    authz.add_member(TENANT, "alice", roles=["admin"])
    authz.add_member(TENANT, "bob", roles=["member"])
    authz.add_member(TENANT, "carol", roles=["viewer"])
    authz.add_member("tenant-b", "alice", roles=["admin"])

    with TestClient(app) as client:
        yield client

    dependencies.reset_dependencies()
    get_app_settings.cache_clear()
