"""FastAPI dependencies resolving lifespan-managed components."""

from typing import Annotated

from fastapi import Depends, Request

from fusion.app.services.fusion import FusionService
from fusion.app.services.fusion_counter import FusionCounter
from fusion.app.services.rate_limit import resolve_client_id


def get_fusion_service(request: Request) -> FusionService:
    return request.app.state.fusion_service


def get_fusion_counter(request: Request) -> FusionCounter:
    return request.app.state.fusion_counter


def get_client_id(request: Request) -> str:
    """Rate-limit key for the caller, from proxy headers."""
    return resolve_client_id(request.headers)


FusionServiceDep = Annotated[FusionService, Depends(get_fusion_service)]
FusionCounterDep = Annotated[FusionCounter, Depends(get_fusion_counter)]
ClientIdDep = Annotated[str, Depends(get_client_id)]
