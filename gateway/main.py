import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Tuple

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .buffers import RingLog, now_iso
from .config import Settings, settings
from .health import HealthAggregator
from .metrics import CONTENT_TYPE, MetricsRegistry
from .promql import QueryProxy, UpstreamQueryError
from .targets import Target

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("gateway")


@dataclass
class GatewayContext:
    '''Everything a request handler needs, built once at startup.'''
    settings: Settings
    targets: Tuple[Target, ...]
    logs: RingLog
    metrics: MetricsRegistry
    aggregator: HealthAggregator
    proxy: QueryProxy

    @classmethod
    def build(
        cls,
        cfg: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GatewayContext":
        # ConfigError här stoppar uppstarten
        targets = cfg.parsed_targets()
        logs = RingLog(cfg.MAX_LOGS, default_service=cfg.SERVICE_NAME)
        ctx = cls(
            settings=cfg,
            targets=targets,
            logs=logs,
            metrics=MetricsRegistry(prefix=cfg.METRICS_PREFIX),
            aggregator=HealthAggregator(logs, timeout=cfg.probe_timeout_s, transport=transport),
            proxy=QueryProxy(cfg.PROM_URL, logs, timeout=cfg.query_timeout_s, transport=transport),
        )
        logs.append(level="info", msg="Gateway started")
        return ctx


def get_context(request: Request) -> GatewayContext:
    return request.app.state.ctx


def create_app(
    cfg: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    cfg = cfg or settings
    ctx = GatewayContext.build(cfg, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("[%s] up on :%d", cfg.SERVICE_NAME, cfg.PORT)
        log.info("Targets: %s", [t.to_dict() for t in ctx.targets])
        yield
        await ctx.aggregator.close()
        await ctx.proxy.close()

    app = FastAPI(title="Observability Gateway", lifespan=lifespan)
    app.state.ctx = ctx

    # --- CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.parsed_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Request-metrics (method, route, status_code)
    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        t0 = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            path = getattr(route, "path", None) or request.url.path or "unknown"
            ctx.metrics.record_request(request.method, path, status_code, time.perf_counter() - t0)

    @app.get("/health")
    def health(ctx: GatewayContext = Depends(get_context)):
        return {
            "service": ctx.settings.SERVICE_NAME,
            "status": "ok",
            "timestamp": now_iso(),
            "services": [t.name for t in ctx.targets],
        }

    @app.get("/metrics")
    def metrics(ctx: GatewayContext = Depends(get_context)):
        try:
            body = ctx.metrics.render()
        except Exception:
            log.exception("Error generating gateway metrics")
            return PlainTextResponse("Error generating metrics", status_code=500)
        return PlainTextResponse(body, media_type=CONTENT_TYPE)

    # --- /obs/query -> Prometheus (PromQL)
    @app.get("/obs/query")
    async def obs_query(query: Optional[str] = None, ctx: GatewayContext = Depends(get_context)):
        if not query:
            return JSONResponse({"error": "Missing PromQL query"}, status_code=400)
        try:
            data = await ctx.proxy.query(query)
        except UpstreamQueryError as e:
            return JSONResponse({"error": "Failed to query Prometheus", "detail": str(e)}, status_code=502)
        return JSONResponse(data)

    @app.get("/obs/healthgraph")
    async def obs_healthgraph(ctx: GatewayContext = Depends(get_context)):
        report = await ctx.aggregator.aggregate(ctx.targets)
        return report.to_dict()

    # --- /obs/logs (senaste först)
    @app.get("/obs/logs")
    def obs_logs(
        limit: Optional[int] = Query(None, ge=1, le=1000),
        ctx: GatewayContext = Depends(get_context),
    ):
        items = ctx.logs.snapshot() if limit is None else ctx.logs.latest(limit)
        return {"items": [e.to_dict() for e in items]}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
