"""Tasks package."""

# Import all tasks so they're registered with Celery
from knowledge_base.worker.tasks import deletion_tasks, maintenance_tasks

__all__ = ["deletion_tasks", "maintenance_tasks"]
