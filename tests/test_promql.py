"""
Tests for the PromQL pass-through.
"""

import httpx
import pytest

from gateway.buffers import RingLog
from gateway.promql import QueryProxy, UpstreamQueryError

PROM_RESPONSE = {"status": "success", "data": {"resultType": "vector", "result": []}}


@pytest.mark.asyncio
async def test_query_relays_response_verbatim():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=PROM_RESPONSE)

    ring = RingLog(10)
    async with QueryProxy("http://prom:9090/", ring, transport=httpx.MockTransport(handler)) as proxy:
        data = await proxy.query("up")

    assert data == PROM_RESPONSE
    assert seen[0].url.path == "/api/v1/query"
    assert seen[0].url.params["query"] == "up"
    (entry,) = ring.snapshot()
    assert entry.level == "info"
    assert entry.service == "gateway"
    assert entry.msg == 'PromQL query executed: "up"'


@pytest.mark.asyncio
async def test_upstream_error_status():
    def handler(request):
        return httpx.Response(400, json={"status": "error", "error": "parse error"})

    ring = RingLog(10)
    proxy = QueryProxy("http://prom:9090", ring, transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamQueryError):
        await proxy.query("up{")
    await proxy.close()

    (entry,) = ring.snapshot()
    assert entry.level == "error"
    assert entry.msg.startswith('PromQL query failed: "up{"')


@pytest.mark.asyncio
async def test_connection_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    ring = RingLog(10)
    proxy = QueryProxy("http://prom:9090", ring, transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamQueryError, match="refused"):
        await proxy.query("up")
    await proxy.close()


@pytest.mark.asyncio
async def test_non_json_body():
    def handler(request):
        return httpx.Response(200, content=b"not json")

    proxy = QueryProxy("http://prom:9090", RingLog(10), transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamQueryError):
        await proxy.query("up")
    await proxy.close()
