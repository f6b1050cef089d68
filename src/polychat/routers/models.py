"""Routes for the selectable model catalog."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..schemas.models import ModelDescriptor, ModelUpdate
from ..services.model_catalog import ModelCatalog
from .chat import get_catalog

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("", response_model=list[ModelDescriptor])
async def list_models(
    enabled_only: bool = False,
    catalog: ModelCatalog = Depends(get_catalog),
) -> list[ModelDescriptor]:
    return await catalog.list_models(enabled_only=enabled_only)


@router.patch("/{model_id}", response_model=ModelDescriptor)
async def update_model(
    model_id: str,
    payload: ModelUpdate,
    catalog: ModelCatalog = Depends(get_catalog),
) -> ModelDescriptor:
    """Enable or disable a model for selection."""

    descriptor = await catalog.set_enabled(model_id, payload.enabled)
    if descriptor is None:
        raise HTTPException(status_code=404, detail=f"Unknown model: {model_id}")
    return descriptor


__all__ = ["router"]
