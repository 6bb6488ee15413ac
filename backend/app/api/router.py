"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from app.api.routes import join_requests

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(join_requests.router)
