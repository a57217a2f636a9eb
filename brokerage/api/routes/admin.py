"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- liveness plus a database round-trip
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text

from brokerage.api.dependencies import get_session_factory
from brokerage.api.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(session_factory=Depends(get_session_factory)):
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check could not reach the database")
        return HealthResponse(status="degraded")
    return HealthResponse()
