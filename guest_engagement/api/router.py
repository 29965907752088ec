from fastapi import APIRouter

from guest_engagement.api.cron import router as cron_router
from guest_engagement.api.jobs import router as jobs_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(cron_router, prefix="/api", tags=["cron"])
api_router.include_router(jobs_router, prefix="/api", tags=["jobs"])
