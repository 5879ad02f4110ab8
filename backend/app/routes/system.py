from __future__ import annotations
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
from app.config import settings
from app.db import get_session
from app.services.broadcast import hub

router = APIRouter(tags=["system"])
log = structlog.get_logger()

@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
        "live_rooms": len(hub.rooms),
        "live_viewers": sum(len(members) for members in hub.rooms.values()),
    }

@router.get("/health/ready")
async def ready(response: Response, session: AsyncSession = Depends(get_session)):
    """Readiness: the process is only useful while the database answers."""
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        log.warning("readiness_db_failed", error=str(e))
        response.status_code = 503
        return {"status": "unavailable", "database": "error"}
    return {"status": "ready", "database": "ok", "relay": settings.redis_relay_enabled}

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "display_name": settings.app_display_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
    }
