"""API v1 router aggregation."""

from fastapi import APIRouter

from sellerops.api.v1.endpoints import dead_letters, health, jobs, rules

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(dead_letters.router, prefix="/dead-letters", tags=["dead-letters"])
api_router.include_router(rules.router, prefix="/rules", tags=["rules"])
