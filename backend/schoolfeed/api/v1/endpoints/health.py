from fastapi import APIRouter, Request

from schoolfeed.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus a count of active feeds"""
    registry = getattr(request.app.state, "feed_registry", None)
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "active_feeds": len(registry) if registry is not None else 0,
    }
