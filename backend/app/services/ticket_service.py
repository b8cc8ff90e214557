import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


def ticket_key(ticket: str) -> str:
    return f"cas_session_slo:{ticket}"


async def expire_ticket(redis: Redis | None, ticket: str) -> bool:
    if redis is None or not ticket:
        return False
    try:
        await redis.set(ticket_key(ticket), "1", ex=settings.ticket_ttl_seconds)
    except RedisError:
        logger.warning("Could not record expired ticket %s", ticket, exc_info=True)
        return False
    return True


async def is_ticket_expired(redis: Redis | None, ticket: str) -> bool:
    if redis is None or not ticket:
        return False
    try:
        return bool(await redis.get(ticket_key(ticket)))
    except RedisError:
        logger.warning("Could not check ticket %s", ticket, exc_info=True)
        return False
