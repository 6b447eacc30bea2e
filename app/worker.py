"""
Celery worker entry point
Runs calendar resyncs, webhook renewals and periodic reconciliation
"""
import logging

from celery.signals import task_postrun, task_prerun, worker_ready

from app.config.celery_config import celery_app
from app.utils.my_logging import correlation_id_var, setup_logging

setup_logging()
logger = logging.getLogger(__name__)

_task_tokens = {}


@task_prerun.connect
def bind_correlation_id(task_id=None, task=None, **kwargs):
    _task_tokens[task_id] = correlation_id_var.set(f"{task.name.rsplit('.', 1)[-1]}:{task_id[:8]}")


@task_postrun.connect
def unbind_correlation_id(task_id=None, **kwargs):
    token = _task_tokens.pop(task_id, None)
    if token is not None:
        correlation_id_var.reset(token)


@worker_ready.connect
def announce_calendar_tasks(sender=None, **kwargs):
    registered = sorted(name for name in celery_app.tasks if name.startswith("app.tasks."))
    logger.info(f"Calendar sync worker ready, tasks: {registered}")


if __name__ == "__main__":
    # Beat drives webhook renewal and reconciliation
    celery_app.start([
        "worker",
        "--beat",
        "--loglevel=info",
        "--concurrency=4",
    ])
