"""Tests for the simple-operation service clients."""

import pytest

from core.domain.entities import OperationRequest, TenantContext
from core.domain.exceptions import ClassificationError, DirectServiceError
from core.infrastructure.adapters.direct import LocalDirectServiceClient, build_local_handlers
from core.infrastructure.adapters.direct.http_client import HttpDirectServiceClient
from core.infrastructure.adapters.domain import DomainServices

CONTEXT = TenantContext(tenant_id="tenant-a", actor_id="alice")


def request(method="GET", path="/api/v1/users", payload=None, key=None):
    return OperationRequest(
        method=method, path=path, tenant_id="tenant-a", actor_id="alice", payload=payload or {}, idempotency_key=key
    )


class FakeResponse:
    def __init__(self, status, body=None, text=""):
        self.status = status
        self._body = body
        self._text = text

    async def json(self):
        return self._body

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def request(self, method, url, json=None, headers=None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers})
        return self.response


@pytest.mark.asyncio
async def test_local_client_reads_tenant_scoped_records():
    services = DomainServices()
    await services.users.create("tenant-a", "k1", "dana@acme.io")
    await services.users.create("tenant-b", "k2", "eve@other.io")
    client = LocalDirectServiceClient(build_local_handlers(services))

    result = await client.call("users", request(), CONTEXT)

    assert [u["email"] for u in result["users"]] == ["dana@acme.io"]
    with pytest.raises(ClassificationError):
        await client.call("billing", request(path="/api/v1/billing"), CONTEXT)


@pytest.mark.asyncio
async def test_http_client_forwards_context_headers():
    session = FakeSession(FakeResponse(200, {"users": []}))
    client = HttpDirectServiceClient({"users": "http://users.internal/"}, session=session)

    result = await client.call("users", request(), CONTEXT)

    assert result == {"users": []}
    sent = session.requests[0]
    assert sent["url"] == "http://users.internal/api/v1/users"
    assert sent["json"] is None
    assert sent["headers"] == {"X-Tenant-ID": "tenant-a", "X-User-ID": "alice"}


@pytest.mark.asyncio
async def test_http_client_sends_body_and_key_for_writes():
    session = FakeSession(FakeResponse(204))
    client = HttpDirectServiceClient({"users": "http://users.internal"}, session=session)

    result = await client.call("users", request("PUT", "/api/v1/users/u1", {"name": "Dana"}, key="k"), CONTEXT)

    assert result is None
    assert session.requests[0]["json"] == {"name": "Dana"}
    assert session.requests[0]["headers"]["Idempotency-Key"] == "k"


@pytest.mark.asyncio
async def test_http_client_surfaces_service_errors_with_status():
    session = FakeSession(FakeResponse(404, text="no such user"))
    client = HttpDirectServiceClient({"users": "http://users.internal"}, session=session)

    with pytest.raises(DirectServiceError) as exc_info:
        await client.call("users", request(path="/api/v1/users/ghost"), CONTEXT)

    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_http_client_rejects_unconfigured_service():
    client = HttpDirectServiceClient({}, session=FakeSession(FakeResponse(200)))

    with pytest.raises(ClassificationError):
        await client.call("files", request(path="/api/v1/files/x"), CONTEXT)
