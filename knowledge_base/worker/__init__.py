"""Worker package for Celery tasks."""

from knowledge_base.worker.celery_app import celery_app

__all__ = ["celery_app"]
