import logging
from typing import Any, Optional

import httpx

from .buffers import RingLog

log = logging.getLogger("promql")


class UpstreamQueryError(Exception):
    '''The metrics backend could not answer a query.'''


class QueryProxy:
    '''
    Minimal pass-through to Prometheus' instant query API (GET /api/v1/query).
    - Svaret skickas vidare oförändrat
    - Fel loggas i ringloggen och lyfts som UpstreamQueryError, inga omförsök
    '''
    def __init__(
        self,
        base_url: str,
        ring: RingLog,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.ring = ring
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def query(self, expression: str) -> Any:
        try:
            resp = await self._get_client().get("/api/v1/query", params={"query": expression})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            reason = str(e) or type(e).__name__
            log.warning("Error querying Prometheus: %s", reason)
            self.ring.append(level="error", msg=f'PromQL query failed: "{expression}" - {reason}')
            raise UpstreamQueryError(reason) from e

        self.ring.append(level="info", msg=f'PromQL query executed: "{expression}"')
        return data
