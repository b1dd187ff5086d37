"""FastAPI application exposing health and metrics"""

import time

from fastapi import FastAPI, Request, Response
import structlog

from mev_sandwich.execution.orchestrator import ExecutionOrchestrator
from mev_sandwich.monitoring import metrics
from mev_sandwich.monitoring.metrics import get_content_type, get_metrics

logger = structlog.get_logger()


def create_app(orchestrator: ExecutionOrchestrator) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        orchestrator: Running execution orchestrator

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="MEV Sandwich Pipeline",
        description="Read-only health and metrics for the sandwich execution pipeline",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Track request count and latency"""
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        metrics.api_request_latency.labels(
            endpoint=request.url.path,
            method=request.method,
        ).observe(time.time() - start_time)
        metrics.api_requests_total.labels(
            endpoint=request.url.path,
            method=request.method,
            status=response.status_code,
        ).inc()
        return response

    app.state.orchestrator = orchestrator

    from mev_sandwich.api.routes import health

    app.include_router(health.router)

    @app.get("/metrics")
    async def metrics_endpoint():
        """Prometheus metrics endpoint"""
        return Response(content=get_metrics(), media_type=get_content_type())

    logger.info("fastapi_app_created", title=app.title, version=app.version)
    return app
