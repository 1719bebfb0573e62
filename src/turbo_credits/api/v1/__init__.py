"""API v1 module."""

from fastapi import APIRouter

from turbo_credits.api.v1.endpoints import purchases

api_router = APIRouter()

# Include routers
api_router.include_router(purchases.router)
