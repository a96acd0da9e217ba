"""API endpoints package."""

from fusion.app.api.fusion import router as fusion_router
from fusion.app.api.fusion_count import router as fusion_count_router

__all__ = [
    "fusion_router",
    "fusion_count_router",
]
