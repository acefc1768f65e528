"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from hookgate.api.incoming import router as incoming_router
from hookgate.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(incoming_router)
api_router.include_router(health_router)
