"""Failed-login counters and lockout.

Counters live in a Redis hash per identity: a ``total`` field plus one
``ip:<address>`` field per remote address, all expiring together. Increments
are atomic HINCRBYs so concurrent requests never lose a failure. If Redis is unreachable the gate
reports NORMAL and skips counting rather than blocking logins.
"""
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.models.enums import LockoutState
from backend.app.services.audit_service import log_attempt

logger = logging.getLogger(__name__)

TOTAL_FIELD = "total"


def login_attempts_key(identity_id: int) -> str:
    return f"login_attempts:{identity_id}"


def address_field(remote_address: str) -> str:
    return f"ip:{remote_address}"


class LoginRegistry:
    def __init__(
        self,
        redis: Redis | None,
        *,
        total_allowed: int = settings.login_attempts_total,
        per_ip_allowed: int = settings.login_attempts_per_ip,
        warning_at: int = settings.login_attempts_warning,
        ttl_seconds: int = settings.login_attempts_ttl_seconds,
    ):
        self.redis = redis
        self.total_allowed = total_allowed
        self.per_ip_allowed = per_ip_allowed
        self.warning_at = warning_at
        self.ttl_seconds = ttl_seconds

    def classify(self, total: int, from_ip: int) -> LockoutState:
        if total >= self.total_allowed or from_ip >= self.per_ip_allowed:
            return LockoutState.locked
        if max(total, from_ip) >= self.warning_at:
            return LockoutState.warning
        return LockoutState.normal

    async def state(self, identity_id: int, remote_address: str | None) -> LockoutState:
        if self.redis is None:
            return LockoutState.normal
        key = login_attempts_key(identity_id)
        try:
            if remote_address:
                total, from_ip = await self.redis.hmget(
                    key, [TOTAL_FIELD, address_field(remote_address)]
                )
            else:
                total, from_ip = await self.redis.hget(key, TOTAL_FIELD), None
        except RedisError:
            logger.warning("Login registry unavailable, lockout disabled", exc_info=True)
            return LockoutState.normal
        return self.classify(int(total or 0), int(from_ip or 0))

    async def record_failure(self, identity_id: int, remote_address: str | None) -> LockoutState:
        if self.redis is None:
            return LockoutState.normal
        key = login_attempts_key(identity_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hincrby(key, TOTAL_FIELD, 1)
                if remote_address:
                    pipe.hincrby(key, address_field(remote_address), 1)
                pipe.expire(key, self.ttl_seconds)
                results = await pipe.execute()
        except RedisError:
            logger.warning("Login registry unavailable, failure not counted", exc_info=True)
            return LockoutState.normal
        total = results[0]
        from_ip = results[1] if remote_address else 0
        return self.classify(total, from_ip)

    async def record_success(self, identity_id: int) -> LockoutState:
        if self.redis is not None:
            try:
                await self.redis.delete(login_attempts_key(identity_id))
            except RedisError:
                logger.warning("Login registry unavailable, counters not reset", exc_info=True)
        return LockoutState.normal


async def audit_login(
    session: AsyncSession,
    registry: LoginRegistry,
    *,
    identity_id: int,
    remote_address: str | None,
    succeeded: bool,
    blocked: bool = False,
) -> LockoutState:
    """Record one attempt. Call exactly once per attempt, including blocked ones."""
    await log_attempt(
        session,
        identity_id=identity_id,
        remote_address=remote_address,
        succeeded=succeeded,
        blocked=blocked,
    )
    if blocked:
        return LockoutState.locked
    if succeeded:
        return await registry.record_success(identity_id)
    return await registry.record_failure(identity_id, remote_address)
