from fastapi import APIRouter
from schoolfeed.api.v1.endpoints import health, notifications

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(notifications.router)
