import logging

from worker.celery_app import celery_app

logger = logging.getLogger(__name__)

UPDATE_ACCOUNT_ASSOCIATIONS = "worker.tasks.update_account_associations"
SEND_IDENTITY_NOTIFICATION = "worker.tasks.send_identity_notification"


def enqueue(task_name: str, *args) -> bool:
    """Fire and forget. Broker trouble is logged, never raised."""
    try:
        celery_app.send_task(task_name, args=list(args))
    except Exception:
        logger.exception("Failed to enqueue %s args=%s", task_name, args)
        return False
    return True


def update_account_associations_later(user_id: int) -> bool:
    return enqueue(UPDATE_ACCOUNT_ASSOCIATIONS, user_id)


def notify(event: str, identity_id: int) -> bool:
    return enqueue(SEND_IDENTITY_NOTIFICATION, event, identity_id)
