# app/config/celery_config.py
"""Celery application factory and periodic schedule"""
from celery import Celery

from app.config.settings import get_settings

settings = get_settings()


def create_celery_app() -> Celery:
    """Create the Celery app used by the worker and by task producers"""
    app = Celery(
        "taskflow",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=["app.tasks.calendar_tasks"],
    )

    app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        beat_schedule={
            "renew-expiring-calendar-webhooks": {
                "task": "app.tasks.calendar_tasks.renew_expiring_webhooks",
                "schedule": settings.WEBHOOK_RENEW_INTERVAL_MINUTES * 60,
            },
            "reconcile-calendar-sync": {
                "task": "app.tasks.calendar_tasks.reconcile_all_users",
                "schedule": settings.SYNC_RECONCILE_INTERVAL_MINUTES * 60,
            },
        },
    )
    return app


celery_app = create_celery_app()
