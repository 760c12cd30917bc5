from fastapi import APIRouter

from titlescan.api.v1.endpoints import analysis, health

# Create API router
api_router = APIRouter()

api_router.include_router(analysis.router, prefix="/analysis", tags=["Analysis"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])

__all__ = ["api_router"]
