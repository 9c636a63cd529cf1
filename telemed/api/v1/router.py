"""API v1 router configuration."""

from fastapi import APIRouter

from telemed.api.v1.endpoints import (
    appointments,
    health,
    jobs,
    notifications,
    video_calls,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(notifications.router, tags=["Notifications"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(video_calls.router, tags=["Video Calls"])
api_router.include_router(jobs.router, tags=["Jobs"])
