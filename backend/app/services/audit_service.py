from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.time import utcnow
from backend.app.models.login_audit_record import LoginAuditRecord


async def log_attempt(
    session: AsyncSession,
    *,
    identity_id: int,
    remote_address: str | None,
    succeeded: bool,
    blocked: bool = False,
) -> LoginAuditRecord:
    record = LoginAuditRecord(
        identity_id=identity_id,
        remote_address=remote_address,
        succeeded=succeeded,
        blocked=blocked,
        created_at=utcnow(),
    )
    session.add(record)
    return record


async def count_attempts(
    session: AsyncSession, *, identity_id: int, succeeded: bool | None = None
) -> int:
    query = select(func.count(LoginAuditRecord.id)).where(
        LoginAuditRecord.identity_id == identity_id
    )
    if succeeded is not None:
        query = query.where(LoginAuditRecord.succeeded.is_(succeeded))
    return (await session.execute(query)).scalar_one()
