"""Health check endpoint. No dependencies; used for liveness checks."""

from fastapi import APIRouter

from sellerops.core.config import get_settings
from sellerops.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Return ok status for liveness."""
    settings = get_settings()
    return HealthResponse(version=settings.app_version, job_store=settings.job_store_backend)
