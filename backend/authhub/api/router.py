"""authhub API Router - aggregates all API routes."""

from fastapi import APIRouter

from authhub.api import auth, token_service

# Main API router - routers carry their own /api/v1/... prefixes
api_router = APIRouter()

api_router.include_router(auth.router)
api_router.include_router(token_service.router)
