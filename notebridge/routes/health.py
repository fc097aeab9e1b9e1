"""
Health check endpoints.

Usage:
    GET /           - Full health check
    GET /health     - Full health check (alias)
    GET /ping       - Simple liveness probe
    GET /ready      - Readiness probe
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from notebridge.config import get_logger
from notebridge.dependencies import get_app_state
from notebridge.exceptions import NotebridgeException
from notebridge.models import HealthResponse, PingResponse, ReadinessResponse, ServiceStatus
from notebridge.state import AppState

logger = get_logger("routes.health")

router = APIRouter(tags=["Health"])


# =============================================================================
# Health Check Endpoint
# =============================================================================

@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    responses={503: {"description": "No model provider configured"}},
)
@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check (alias)",
    responses={503: {"description": "No model provider configured"}},
)
async def health_check(
    state: AppState = Depends(get_app_state),
    deep: bool = Query(default=False, description="Also query the local server for loaded models"),
) -> HealthResponse | JSONResponse:
    """
    Returns provider, model and index status.

    The health check reports status as:
    - **healthy**: providers configured and (for deep checks) the local server answers
    - **degraded**: the local server did not answer a deep check
    - **unhealthy**: no provider configured
    """
    providers = [p.id for p in state.registry.all()]
    services: dict[str, Any] = {
        "providers": providers,
        "gateway": {
            "chat_model": state.gateway.config.chat_model,
            "active_local_model": state.gateway.active_local_model,
        },
        "index": {
            "chunks": len(state.store),
            "path": str(state.store.path),
            "indexing": state.indexer.is_indexing,
        },
        "transport": state.transport.name,
    }

    local_ok = True
    if deep and "local" in state.registry:
        start_time = time.perf_counter()
        try:
            await state.registry.get("local").list_models()
            services["local"] = {
                "status": "healthy",
                "latency_ms": round((time.perf_counter() - start_time) * 1000, 2),
            }
        except NotebridgeException as e:
            logger.warning("Deep health check failed for local server: %s", e.message)
            local_ok = False
            services["local"] = {"status": "unavailable", "details": e.message}

    if not providers:
        overall_status = ServiceStatus.UNHEALTHY
    elif not local_ok:
        overall_status = ServiceStatus.DEGRADED
    else:
        overall_status = ServiceStatus.HEALTHY

    response = HealthResponse(
        status=overall_status,
        services=services,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )

    if overall_status is ServiceStatus.UNHEALTHY:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


# =============================================================================
# Liveness Probe
# =============================================================================

@router.get("/ping", response_model=PingResponse, summary="Liveness probe")
async def ping() -> PingResponse:
    """Always returns 200 while the server runs; checks nothing."""
    return PingResponse(status="ok")


# =============================================================================
# Readiness Probe
# =============================================================================

@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    responses={503: {"description": "Service is not ready"}},
)
async def readiness_check(
    state: AppState = Depends(get_app_state),
) -> ReadinessResponse | JSONResponse:
    checks = {
        "providers": state.is_ready(),
        "local": "local" in state.registry,
    }
    response = ReadinessResponse(ready=checks["providers"], checks=checks)

    if not response.ready:
        logger.warning("Readiness check failed: no provider configured")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(),
        )
    return response
