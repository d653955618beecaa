"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from splitlab.api.split_tests import get_content_system
from splitlab.database import get_db
from splitlab.services.content_client import ContentSystemClient

router = APIRouter()


@router.get("/health")
@router.head("/health")
async def health_check():
    """Liveness only; touches nothing."""
    return {"status": "healthy", "service": "splitlab-backend"}


@router.get("/health/detailed")
async def detailed_health_check(
    db: Session = Depends(get_db),
    content_client: ContentSystemClient = Depends(get_content_system)
):
    """
    Database and content system status.

    The content system is only needed to deploy winners, so it being
    unreachable degrades the service but allocation keeps working.
    A disabled content system client is reported as such and not counted.
    """
    checks = {"database": "unknown", "content_system": "unknown"}

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        checks["database"] = f"unhealthy: {str(e)}"

    if not content_client.enabled:
        checks["content_system"] = "disabled"
    elif await content_client.health_check():
        checks["content_system"] = "healthy"
    else:
        checks["content_system"] = "unreachable"

    if checks["database"] != "healthy":
        overall_status = "unhealthy"
    elif checks["content_system"] == "unreachable":
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "checks": checks
    }
