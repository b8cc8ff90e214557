import asyncio
import logging
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from backend.app.core.config import settings
from backend.app.services.errors import IdentityNotFound
from backend.app.services.identity_service import get_identity
from backend.app.services.user_service import update_account_associations
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@asynccontextmanager
async def worker_session():
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with Session() as session:
        yield session
    await engine.dispose()


@celery_app.task(name="worker.tasks.update_account_associations")
def update_account_associations_task(user_id: int) -> None:
    asyncio.run(_update_account_associations_async(user_id))


async def _update_account_associations_async(user_id: int) -> None:
    async with worker_session() as session:
        account_ids = await update_account_associations(session, user_id=user_id)
        await session.commit()
    logger.info("Account associations rebuilt user_id=%s accounts=%s", user_id, sorted(account_ids))


@celery_app.task(name="worker.tasks.send_identity_notification")
def send_identity_notification(event: str, identity_id: int) -> None:
    asyncio.run(_send_identity_notification_async(event, identity_id))


async def _send_identity_notification_async(event: str, identity_id: int) -> None:
    # Delivery belongs to the messaging service; this only hands the event over.
    async with worker_session() as session:
        try:
            identity = await get_identity(session, identity_id)
        except IdentityNotFound:
            logger.warning("Notification %s for missing identity_id=%s", event, identity_id)
            return
        logger.info(
            "Notification %s identity_id=%s user_id=%s channel_id=%s",
            event,
            identity.id,
            identity.user_id,
            identity.communication_channel_id,
        )
