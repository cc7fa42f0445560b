"""
API Version 1 routes for MachineHub.
"""
from fastapi import APIRouter

from .suppliers import router as suppliers_router
from .telemetry import router as telemetry_router
from .webhooks import router as webhooks_router

# Operator API; webhooks are mounted at the application root
api_router = APIRouter()

api_router.include_router(suppliers_router)
api_router.include_router(telemetry_router)

__all__ = [
    "api_router",
    "suppliers_router",
    "telemetry_router",
    "webhooks_router",
]
