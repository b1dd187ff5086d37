"""Health check endpoint"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field
import structlog

from mev_sandwich.execution.orchestrator import ExecutionOrchestrator

logger = structlog.get_logger()

router = APIRouter(tags=["health"])


async def get_orchestrator(request: Request) -> ExecutionOrchestrator:
    """Get the orchestrator from app state"""
    return request.app.state.orchestrator


class HealthResponse(BaseModel):
    """Health check response model"""

    status: str = Field(description="healthy, stopped or emergency_stop")
    running: bool = Field(description="Whether new opportunities are accepted")
    emergency_stop: bool = Field(description="Whether the kill switch is engaged")
    paper_trading: bool = Field(description="Whether bundles are only simulated")
    uptime_seconds: float = Field(description="Seconds since the orchestrator started")
    in_flight: int = Field(description="Executions currently holding a slot")
    max_concurrent_bundles: int = Field(description="Configured execution slot count")
    chains: Dict[str, Dict[str, Any]] = Field(description="Per-chain enabled and relay state")
    counters: Dict[str, Any] = Field(description="Health and performance counters")
    breakers: Dict[str, Dict[str, Any]] = Field(description="Circuit breaker states")
    risk: Dict[str, Any] = Field(description="Risk gate snapshot")


@router.get("/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    orchestrator: ExecutionOrchestrator = Depends(get_orchestrator),
) -> HealthResponse:
    """
    Report pipeline status.

    Returns:
    - 200 OK while the orchestrator is running
    - 503 Service Unavailable when it is stopped or the kill switch is engaged
    """
    snapshot = orchestrator.get_status()
    if snapshot["emergency_stop"]:
        state = "emergency_stop"
    elif snapshot["running"]:
        state = "healthy"
    else:
        state = "stopped"

    if state != "healthy":
        logger.warning("health_check_unhealthy", state=state)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=state,
        running=snapshot["running"],
        emergency_stop=snapshot["emergency_stop"],
        paper_trading=snapshot["paper_trading"],
        uptime_seconds=snapshot["uptime_seconds"],
        in_flight=snapshot["in_flight"],
        max_concurrent_bundles=snapshot["max_concurrent_bundles"],
        chains=snapshot["chains"],
        counters=snapshot["counters"],
        breakers=snapshot["breakers"],
        risk=snapshot["risk"],
    )
