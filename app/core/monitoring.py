"""Health checks and monitoring endpoints"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from app.config.database import get_db
from app.config.redis import get_redis
from app.models.calendar_sync_settings import CalendarSyncSettings
from app.utils.datetime_utils import utc_now

health_router = APIRouter()
logger = logging.getLogger(__name__)


@health_router.get("/")
async def health_check():
    return {"status": "healthy", "service": "taskflow-calendar-sync"}


def _sync_counters(db: Session) -> dict:
    count = func.count(CalendarSyncSettings.id)
    return {
        "enabled_users": db.query(count).filter(CalendarSyncSettings.is_enabled.is_(True)).scalar(),
        "active_channels": db.query(count).filter(CalendarSyncSettings.channel_id.isnot(None)).scalar(),
        "expired_channels": db.query(count).filter(CalendarSyncSettings.channel_expiry < utc_now()).scalar(),
    }


async def _probe_redis() -> str:
    client = await get_redis()
    try:
        await client.ping()
    finally:
        await client.aclose()
    return "healthy"


@health_router.get("/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """Database and Redis reachability plus calendar channel counters"""
    checks = {"api": "healthy"}
    calendar_sync = {}

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
        calendar_sync = _sync_counters(db)
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        checks["database"] = f"unhealthy: {str(e)}"

    # Lock and notifier both live in Redis
    try:
        checks["redis"] = await _probe_redis()
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        checks["redis"] = f"unhealthy: {str(e)}"

    checks["overall"] = "healthy" if all(v == "healthy" for v in checks.values()) else "degraded"
    return {**checks, "calendar_sync": calendar_sync}
