"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import applications, projects

api_router = APIRouter()

# Include all route modules
api_router.include_router(applications.router, prefix="/applications", tags=["Applications"])
api_router.include_router(projects.router, prefix="/projects", tags=["Projects"])
