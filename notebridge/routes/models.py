"""
Model management endpoints.

Usage:
    GET  /models           - Models of every configured backend
    POST /models/preload   - Warm a local model
    POST /models/unload    - Unload a local model (default: the active one)
    GET  /models/running   - Models resident in the local server
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from notebridge.config import get_logger
from notebridge.dependencies import get_app_state
from notebridge.models import (
    BestEffortResponse,
    ModelActionRequest,
    ModelInfoModel,
    ModelsResponse,
    RunningModelsResponse,
)
from notebridge.state import AppState

logger = get_logger("routes.models")

router = APIRouter(prefix="/models", tags=["Models"])


@router.get("", response_model=ModelsResponse, summary="List models")
async def list_models(state: AppState = Depends(get_app_state)) -> ModelsResponse:
    """Backends that fail to answer are left out of the list."""
    models = await state.gateway.list_models()
    return ModelsResponse(
        models=[ModelInfoModel.from_info(m) for m in models],
        active_local_model=state.gateway.active_local_model,
    )


@router.post("/preload", response_model=BestEffortResponse, summary="Preload a local model")
async def preload_model(
    body: ModelActionRequest,
    state: AppState = Depends(get_app_state),
) -> BestEffortResponse:
    result = await state.gateway.preload(body.model)
    return BestEffortResponse(ok=result.ok, detail=result.detail)


@router.post("/unload", response_model=BestEffortResponse, summary="Unload a local model")
async def unload_model(
    body: ModelActionRequest,
    state: AppState = Depends(get_app_state),
) -> BestEffortResponse:
    result = await state.gateway.unload(body.model)
    logger.info("Unload %s: ok=%s %s", body.model or "(active)", result.ok, result.detail)
    return BestEffortResponse(ok=result.ok, detail=result.detail)


@router.get("/running", response_model=RunningModelsResponse, summary="Loaded local models")
async def running_models(state: AppState = Depends(get_app_state)) -> RunningModelsResponse:
    return RunningModelsResponse(
        models=await state.gateway.running_models(),
        active_local_model=state.gateway.active_local_model,
    )
