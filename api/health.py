"""
Health and database diagnostics routes.

Routes:
  GET  /health               Service liveness plus overall database status
  GET  /api/debug/db-health  Full database diagnostics payload
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from config import config
from database.context import DatabaseContext, get_db_context
from services.db_health import check_database_health

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(ctx: DatabaseContext = Depends(get_db_context)):
    """Minimal status; 503 when the system database is unreachable."""
    report = await check_database_health(ctx)
    payload = {
        "status": report["status"],
        "service": config.service_name,
        "version": config.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    status_code = 503 if report["status"] == "critical" else 200
    return JSONResponse(status_code=status_code, content=payload)


@router.get("/api/debug/db-health")
async def database_health(ctx: DatabaseContext = Depends(get_db_context)):
    report = await check_database_health(ctx)
    if report["status"] != "healthy":
        logger.warning("Database health is %s", report["status"])
    return report
