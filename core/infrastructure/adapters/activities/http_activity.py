"""
HTTP-backed activity adapter.

Calls a domain service over HTTP with aiohttp, passing the tenant and an
idempotency key derived from (execution id, step index, adapter) so the
remote service can deduplicate replays.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from core.domain.exceptions import TenantIsolationError
from core.domain.value_objects import ExecutionID, FatalFailure, Outcome, RetryableFailure, Success

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"
EXECUTION_HEADER = "X-Execution-ID"
IDEMPOTENCY_HEADER = "Idempotency-Key"

RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class HttpActivity:
    """
    One remote capability exposed as an activity.

    Status mapping:
    - 2xx -> Success(JSON body)
    - 408/425/429/5xx, connection errors, timeouts -> RetryableFailure
    - any other status -> FatalFailure
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        path: str,
        method: str = "POST",
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.name = name
        self.url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
        self.method = method.upper()
        self.timeout_seconds = timeout_seconds
        self._session = session

    async def invoke(
        self, tenant_id: str, execution_id: ExecutionID, step_index: int, input_: Dict[str, Any]
    ) -> Outcome:
        if not tenant_id:
            raise TenantIsolationError(f"{self.name} invoked without a tenant id")
        scoped = input_.get("tenant_id")
        if scoped and scoped != tenant_id:
            raise TenantIsolationError(f"{self.name} invoked for tenant {tenant_id} with data of tenant {scoped}")

        headers = {
            TENANT_HEADER: tenant_id,
            EXECUTION_HEADER: str(execution_id),
            IDEMPOTENCY_HEADER: f"{execution_id}:{step_index}:{self.name}",
        }

        try:
            if self._session is not None:
                return await self._send(self._session, headers, input_)
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
                return await self._send(session, headers, input_)
        except asyncio.TimeoutError:
            return RetryableFailure(f"{self.name}: request timed out after {self.timeout_seconds}s")
        except aiohttp.ClientError as e:
            logger.warning(f"{self.name}: connection error calling {self.url}: {e}")
            return RetryableFailure(f"{self.name}: {type(e).__name__}: {e}")

    async def _send(self, session, headers: Dict[str, str], input_: Dict[str, Any]) -> Outcome:
        async with session.request(self.method, self.url, json=input_, headers=headers) as response:
            if 200 <= response.status < 300:
                body = await response.json() if response.status != 204 else None
                return Success(body)

            error_text = await response.text()
            reason = f"{self.name}: HTTP {response.status} - {error_text}"
            if response.status in RETRYABLE_STATUSES:
                return RetryableFailure(reason)
            logger.error(reason)
            return FatalFailure(reason)
