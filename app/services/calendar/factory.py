# app/services/calendar/factory.py
"""Wiring for routes and Celery workers"""
from sqlalchemy.orm import Session

from app.config.redis import get_sync_redis
from app.services.calendar.google_calendar_service import GoogleCalendarService
from app.services.calendar.notifier import RedisChangeNotifier
from app.services.calendar.orphan_reconciler import OrphanReconciler
from app.services.calendar.sync_lock import RedisSyncLock
from app.services.calendar.sync_service import CalendarSyncService
from app.services.calendar.token_manager import TokenManager
from app.services.calendar.webhook_channel_service import WebhookChannelService


def build_sync_service(db: Session) -> CalendarSyncService:
    redis_client = get_sync_redis()
    token_manager = TokenManager(db)
    return CalendarSyncService(
        db=db,
        provider=GoogleCalendarService(token_manager),
        token_manager=token_manager,
        notifier=RedisChangeNotifier(redis_client),
        lock=RedisSyncLock(redis_client),
    )


def build_webhook_service(db: Session) -> WebhookChannelService:
    return WebhookChannelService(build_sync_service(db))


def build_orphan_reconciler(db: Session) -> OrphanReconciler:
    return OrphanReconciler(build_sync_service(db))
