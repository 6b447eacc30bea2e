# ===== app/tasks/calendar_tasks.py =====
"""
Celery tasks for calendar synchronization.

Provider outages at setup level are retried with a linear backoff. A sync that is
already running for the user absorbs the trigger ("coalesced"). Missing or revoked
authorization is reported and never retried.
"""
import logging

from app.config.celery_config import celery_app
from app.config.database import SessionLocal
from app.models.calendar_sync_settings import CalendarSyncSettings
from app.services.calendar.exceptions import CalendarSyncError, ProviderUnavailable, SyncInProgress
from app.services.calendar.factory import build_sync_service, build_webhook_service

logger = logging.getLogger(__name__)


def _retry_countdown(task) -> int:
    return 60 * (task.request.retries + 1)


@celery_app.task(bind=True, max_retries=3)
def sync_user_calendar(self, user_id: str):
    """Full push + pull for one user"""
    db = SessionLocal()
    try:
        result = build_sync_service(db).sync_user(user_id)
        return {"status": "success", "push": result.push.model_dump(), "pull": result.pull.model_dump()}
    except SyncInProgress:
        return {"status": "coalesced"}
    except ProviderUnavailable as exc:
        logger.warning(f"Calendar provider unavailable for user {user_id}, retrying: {exc}")
        raise self.retry(exc=exc, countdown=_retry_countdown(self))
    except CalendarSyncError as exc:
        logger.error(f"Calendar sync failed for user {user_id}: {exc}")
        return {"status": "failed", "reason": exc.message}
    finally:
        db.close()


@celery_app.task
def process_calendar_change(user_id: str):
    """Webhook-triggered resync; queued by the push notification endpoint.

    Failures are logged by the service and not retried, the next notification
    or the periodic reconciliation picks the changes up.
    """
    db = SessionLocal()
    try:
        result = build_webhook_service(db).process_change(user_id)
        if result is None:
            return {"status": "skipped"}
        return {"status": "success", **result.model_dump()}
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def sync_task_to_calendar(self, user_id: str, task_id: str):
    """Push a single task right after it was created or edited"""
    db = SessionLocal()
    try:
        result = build_sync_service(db).sync_task(user_id, task_id)
        return {"status": "success", **result.model_dump()}
    except SyncInProgress:
        # the running sync picks the task up, it is dirty
        return {"status": "coalesced"}
    except ProviderUnavailable as exc:
        raise self.retry(exc=exc, countdown=_retry_countdown(self))
    except CalendarSyncError as exc:
        logger.error(f"Task {task_id} sync failed for user {user_id}: {exc}")
        return {"status": "failed", "reason": exc.message}
    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3)
def delete_calendar_event(self, user_id: str, calendar_id: str, event_id: str):
    """Remove the provider copy of a deleted task or event"""
    db = SessionLocal()
    try:
        deleted = build_sync_service(db).delete_external_event(user_id, calendar_id, event_id)
        return {"status": "success" if deleted else "skipped"}
    except ProviderUnavailable as exc:
        raise self.retry(exc=exc, countdown=_retry_countdown(self))
    except CalendarSyncError as exc:
        logger.error(f"Failed to delete external event {event_id} for user {user_id}: {exc}")
        return {"status": "failed", "reason": exc.message}
    finally:
        db.close()


@celery_app.task
def renew_expiring_webhooks():
    """Periodic: re-register channels that expire within the lead window"""
    db = SessionLocal()
    try:
        renewed = build_webhook_service(db).renew_all_expiring()
        logger.info(f"Renewed {renewed} calendar webhook channels")
        return {"status": "success", "renewed": renewed}
    finally:
        db.close()


@celery_app.task
def reconcile_all_users():
    """Periodic: queue a full sync for every enabled user, catching missed notifications"""
    db = SessionLocal()
    try:
        user_ids = [
            user_id for (user_id,) in
            db.query(CalendarSyncSettings.user_id).filter(CalendarSyncSettings.is_enabled.is_(True)).all()
        ]
    finally:
        db.close()

    for user_id in user_ids:
        sync_user_calendar.delay(user_id)
    logger.info(f"Queued calendar reconciliation for {len(user_ids)} users")
    return {"status": "success", "queued": len(user_ids)}
