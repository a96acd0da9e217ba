"""Fusion generation endpoints.

Each endpoint returns ``{"success": true, ...}`` on success. Failures are
raised as ``FusionError`` and rendered as ``{"error": ...}`` by the
application's exception handlers.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from fusion.app.api.dependencies import ClientIdDep, FusionServiceDep

router = APIRouter(prefix="/api", tags=["fusion"])


class FusionItemsRequest(BaseModel):
    """Body for description generation."""

    input1: Optional[str] = None
    input2: Optional[str] = None


class GenerateImageRequest(FusionItemsRequest):
    """Body for image generation; ``theme`` is optional."""

    theme: Optional[str] = None


class GenerateLoreRequest(BaseModel):
    description: Optional[str] = None


@router.post("/generate-image")
async def generate_image(
    body: GenerateImageRequest,
    service: FusionServiceDep,
    client_id: ClientIdDep,
) -> Dict[str, Any]:
    return await service.generate_image(client_id, body.input1, body.input2, body.theme)


@router.post("/generate-description")
async def generate_description(
    body: FusionItemsRequest,
    service: FusionServiceDep,
    client_id: ClientIdDep,
) -> Dict[str, Any]:
    return await service.generate_description(client_id, body.input1, body.input2)


@router.post("/suggest-ideas")
async def suggest_ideas(service: FusionServiceDep, client_id: ClientIdDep) -> Dict[str, Any]:
    """Suggest two items to fuse. Any request body is ignored."""
    return await service.suggest_ideas(client_id)


@router.post("/generate-lore")
async def generate_lore(
    body: GenerateLoreRequest,
    service: FusionServiceDep,
    client_id: ClientIdDep,
) -> Dict[str, Any]:
    return await service.generate_lore(client_id, body.description)
