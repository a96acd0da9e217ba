"""Global fusion counter endpoints."""

from fastapi import APIRouter

from fusion.app.api.dependencies import FusionCounterDep

router = APIRouter(prefix="/api", tags=["fusion-count"])


@router.get("/fusion-count")
async def get_fusion_count(counter: FusionCounterDep) -> dict[str, int]:
    return {"count": await counter.read()}


@router.post("/fusion-count")
async def increment_fusion_count(counter: FusionCounterDep) -> dict[str, int]:
    """Record one more fusion and return the post-increment count."""
    return {"count": await counter.increment()}
