"""
HTTP direct service client.

Forwards a simple operation to the owning domain service over aiohttp,
carrying the resolved tenant and actor as headers.
"""
import logging
from typing import Any, Dict, Optional

import aiohttp

from core.application.interfaces import IDirectServiceClient
from core.domain.entities import OperationRequest, TenantContext
from core.domain.exceptions import ClassificationError, DirectServiceError

logger = logging.getLogger(__name__)


class HttpDirectServiceClient(IDirectServiceClient):
    """Service name -> base URL."""

    def __init__(
        self,
        service_urls: Dict[str, str],
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.service_urls = {name: url.rstrip("/") for name, url in service_urls.items()}
        self.timeout_seconds = timeout_seconds
        self._session = session

    async def call(self, service: str, request: OperationRequest, context: TenantContext) -> Any:
        base_url = self.service_urls.get(service)
        if base_url is None:
            raise ClassificationError(f"No service URL configured for {service}")

        headers = {"X-Tenant-ID": context.tenant_id, "X-User-ID": context.actor_id}
        if request.idempotency_key:
            headers["Idempotency-Key"] = request.idempotency_key
        body = request.payload_dict() if request.method != "GET" else None

        if self._session is not None:
            return await self._send(self._session, base_url, request, headers, body)
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
            return await self._send(session, base_url, request, headers, body)

    async def _send(self, session, base_url: str, request: OperationRequest, headers, body) -> Any:
        url = f"{base_url}{request.path}"
        async with session.request(request.method, url, json=body, headers=headers) as response:
            if response.status >= 400:
                error_text = await response.text()
                logger.error(f"Direct call {request.method} {url} failed: {response.status} - {error_text}")
                raise DirectServiceError(f"{request.method} {request.path} failed: {error_text}", response.status)
            if response.status == 204:
                return None
            return await response.json()
