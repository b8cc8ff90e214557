from celery import Celery

from backend.app.core.config import settings
from backend.app.core.logging import setup_logging

celery_app = Celery(
    "identity_worker",
    broker=settings.redis_url,
    include=["worker.tasks"],
)

setup_logging()

# Login side effects are fire and forget; nobody reads their results.
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    task_ignore_result=True,
    task_routes={
        "worker.tasks.update_account_associations": {"queue": "associations"},
        "worker.tasks.send_identity_notification": {"queue": "notifications"},
    },
    timezone="UTC",
    enable_utc=True,
)
