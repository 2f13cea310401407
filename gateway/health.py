import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .buffers import RingLog, now_iso
from .targets import Target

log = logging.getLogger("health")

DEFAULT_PROBE_TIMEOUT_S = 2.0


class ProbeFailure(Exception):
    '''A probe ended without a usable health body.'''


class ProbeTimeout(ProbeFailure):
    pass


@dataclass
class HealthOutcome:
    name: str
    url: str
    status: str
    latency_ms: int
    last_check: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "url": self.url,
            "status": self.status,
            "latencyMs": self.latency_ms,
            "lastCheck": self.last_check,
        }
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class HealthReport:
    timestamp: str
    services: List[HealthOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "services": [s.to_dict() for s in self.services]}


def _elapsed_ms(t0: float) -> int:
    return max(0, int((time.monotonic() - t0) * 1000))


class HealthAggregator:
    '''
    Probe every target's /health concurrently and collect one outcome per target.
    - Varje probe har en egen deadline; en död target påverkar inte de andra
    - Resultatet följer registrets ordning, inte i vilken ordning proberna blev klara
    - Varje probe skriver exakt en post till ringloggen
    - Klienten lever tills close(), inte per anrop
    '''
    def __init__(
        self,
        ring: RingLog,
        timeout: float = DEFAULT_PROBE_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.ring = ring
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(transport=self._transport, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def aggregate(self, targets: Sequence[Target], timeout: Optional[float] = None) -> HealthReport:
        timeout = self.timeout if timeout is None else timeout
        client = self._get_client()
        outcomes = await asyncio.gather(*(self._probe(client, t, timeout) for t in targets))
        return HealthReport(timestamp=now_iso(), services=list(outcomes))

    async def _probe(self, client: httpx.AsyncClient, target: Target, timeout: float) -> HealthOutcome:
        t0 = time.monotonic()
        try:
            status = await self._fetch_with_deadline(client, target, timeout)
        except ProbeFailure as e:
            return self._down(target, t0, str(e) or type(e).__name__)
        except Exception as e:
            # okända fel ska inte kunna fälla syskonproberna
            log.exception("Unexpected error probing %s", target.name)
            return self._down(target, t0, str(e) or type(e).__name__)

        latency = _elapsed_ms(t0)
        self.ring.append(level="info", service=target.name, msg=f"Healthcheck ok ({latency}ms)")
        return HealthOutcome(
            name=target.name,
            url=target.base_url,
            status=status,
            latency_ms=latency,
            last_check=now_iso(),
        )

    async def _fetch_with_deadline(self, client: httpx.AsyncClient, target: Target, timeout: float) -> str:
        try:
            return await asyncio.wait_for(self._fetch_status(client, target, timeout), timeout)
        except asyncio.TimeoutError as e:
            raise ProbeTimeout(f"timeout of {int(timeout * 1000)}ms exceeded") from e

    async def _fetch_status(self, client: httpx.AsyncClient, target: Target, timeout: float) -> str:
        try:
            resp = await client.get(target.health_url, timeout=timeout)
        except httpx.TimeoutException as e:
            raise ProbeTimeout(f"timeout of {int(timeout * 1000)}ms exceeded ({type(e).__name__})") from e
        except httpx.HTTPError as e:
            raise ProbeFailure(str(e) or type(e).__name__) from e
        if not resp.is_success:
            raise ProbeFailure(f"HTTP {resp.status_code} from {target.health_url}")
        try:
            body = resp.json()
        except ValueError as e:
            raise ProbeFailure(f"malformed health body: {e}") from e
        if not isinstance(body, dict):
            raise ProbeFailure(f"malformed health body: expected object, got {type(body).__name__}")
        status = body.get("status")
        if status is None or status == "":
            return "unknown"
        return status if isinstance(status, str) else str(status)

    def _down(self, target: Target, t0: float, error: str) -> HealthOutcome:
        latency = _elapsed_ms(t0)
        log.warning("Healthcheck failed for %s (%dms): %s", target.name, latency, error)
        self.ring.append(level="error", service=target.name, msg=f"Healthcheck failed ({latency}ms): {error}")
        return HealthOutcome(
            name=target.name,
            url=target.base_url,
            status="down",
            latency_ms=latency,
            last_check=now_iso(),
            error=error,
        )
