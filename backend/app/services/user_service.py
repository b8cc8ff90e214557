from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.time import utcnow
from backend.app.models.communication_channel import CommunicationChannel
from backend.app.models.enums import ChannelState, IdentityState, UserState
from backend.app.models.identity import Identity
from backend.app.models.user import User
from backend.app.models.user_account_association import UserAccountAssociation

ASSOCIATION_SKIP_STATES = {UserState.creation_pending, UserState.deleted}


async def mark_registered(session: AsyncSession, user: User) -> bool:
    """Returns True when the user transitioned on this call."""
    if user.state in (UserState.registered, UserState.deleted):
        return False
    user.state = UserState.registered
    return True


async def find_email_channel(
    session: AsyncSession, *, user_id: int, path: str
) -> CommunicationChannel | None:
    result = await session.execute(
        select(CommunicationChannel).where(
            CommunicationChannel.user_id == user_id,
            CommunicationChannel.path_type == "email",
            func.lower(CommunicationChannel.path) == path.lower(),
        )
    )
    return result.scalars().first()


async def activate_email_channel(
    session: AsyncSession, *, user_id: int, identity_id: int, path: str
) -> CommunicationChannel:
    channel = await find_email_channel(session, user_id=user_id, path=path)
    if channel is None:
        channel = CommunicationChannel(
            user_id=user_id,
            identity_id=identity_id,
            path=path,
            path_type="email",
            created_at=utcnow(),
        )
        session.add(channel)
    channel.state = ChannelState.active
    await session.flush()
    return channel


async def retire_identity_channels(session: AsyncSession, identity: Identity) -> int:
    result = await session.execute(
        update(CommunicationChannel)
        .where(
            CommunicationChannel.user_id == identity.user_id,
            CommunicationChannel.identity_id == identity.id,
            CommunicationChannel.state != ChannelState.retired,
        )
        .values(state=ChannelState.retired)
    )
    return result.rowcount


async def add_account_association(
    session: AsyncSession, *, user: User, account_id: int
) -> None:
    if user.state in ASSOCIATION_SKIP_STATES:
        return
    existing = await session.execute(
        select(UserAccountAssociation).where(
            UserAccountAssociation.user_id == user.id,
            UserAccountAssociation.account_id == account_id,
        )
    )
    if existing.scalar_one_or_none():
        return
    session.add(UserAccountAssociation(user_id=user.id, account_id=account_id, depth=0))


async def update_account_associations(session: AsyncSession, *, user_id: int) -> set[int]:
    """Rebuild the user's associations from their active identities."""
    rows = await session.execute(
        select(Identity.account_id)
        .where(Identity.user_id == user_id, Identity.state == IdentityState.active)
        .distinct()
    )
    wanted = set(rows.scalars().all())
    stale = delete(UserAccountAssociation).where(UserAccountAssociation.user_id == user_id)
    if wanted:
        stale = stale.where(UserAccountAssociation.account_id.not_in(wanted))
    await session.execute(stale)
    current = await session.execute(
        select(UserAccountAssociation.account_id).where(
            UserAccountAssociation.user_id == user_id
        )
    )
    for account_id in wanted - set(current.scalars().all()):
        session.add(UserAccountAssociation(user_id=user_id, account_id=account_id, depth=0))
    await session.flush()
    return wanted
