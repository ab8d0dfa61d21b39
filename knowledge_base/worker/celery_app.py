"""Celery app configuration."""

from celery import Celery
from celery.schedules import crontab

from knowledge_base.core.config import settings

celery_app = Celery(
    "knowledge_base.worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "knowledge_base.worker.tasks.deletion_tasks",
        "knowledge_base.worker.tasks.maintenance_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_hijack_root_logger=False,
)

celery_app.conf.beat_schedule = {
    "expire-stale-ingestion-sessions": {
        "task": "knowledge_base.worker.tasks.maintenance_tasks.expire_stale_sessions",
        "schedule": crontab(hour=2, minute=0),
    },
    "purge-expired-deletions": {
        "task": "knowledge_base.worker.tasks.maintenance_tasks.purge_expired_deletions",
        "schedule": crontab(minute=30),
    },
    "resume-deletion-queue": {
        "task": "knowledge_base.worker.tasks.deletion_tasks.resume_deletion_queue",
        "schedule": crontab(),
    },
}
