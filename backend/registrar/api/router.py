"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from registrar.api.routes import events, registrations

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(registrations.router)
api_router.include_router(events.router)
