"""
Main API router for the application
"""
from fastapi import APIRouter

from api.endpoints import bitbucket

# Create main API router
api_router = APIRouter()

api_router.include_router(
    bitbucket.router,
    prefix="/bitbucket",
    tags=["bitbucket"]
)
