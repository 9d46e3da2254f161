"""
Health check endpoint.
Verifies database connectivity and reports vault configuration.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.config import settings
from tenantpay.database import get_db

router = APIRouter()


@router.get("")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.
    Returns database status and whether a real encryption key is configured.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "encryption_key": "configured" if settings.encryption_key else "default",
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        health_status["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
