from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.account import Account
from backend.app.models.authentication_provider import AuthenticationProvider
from backend.app.models.enums import AuthType, ProviderState
from backend.app.models.identity import Identity
from backend.app.services.errors import AccountNotFound


async def get_account(session: AsyncSession, account_id: int) -> Account:
    account = await session.get(Account, account_id)
    if not account:
        raise AccountNotFound(f"Account {account_id} not found")
    return account


async def get_site_admin_account_id(session: AsyncSession) -> int | None:
    result = await session.execute(
        select(Account.id).where(Account.is_site_admin.is_(True)).order_by(Account.id)
    )
    return result.scalars().first()


async def partition_by_shard(
    session: AsyncSession, account_ids: list[int]
) -> dict[int, list[int]]:
    """Group account ids by shard. Unknown ids are dropped."""
    if not account_ids:
        return {}
    rows = (
        await session.execute(
            select(Account.id, Account.shard_id).where(Account.id.in_(account_ids))
        )
    ).all()
    partitions: dict[int, list[int]] = defaultdict(list)
    for account_id, shard_id in rows:
        partitions[shard_id].append(account_id)
    return dict(partitions)


async def list_active_providers(
    session: AsyncSession, account_id: int, *, auth_type: AuthType | None = None
) -> list[AuthenticationProvider]:
    query = select(AuthenticationProvider).where(
        AuthenticationProvider.account_id == account_id,
        AuthenticationProvider.state == ProviderState.active,
    )
    if auth_type is not None:
        query = query.where(AuthenticationProvider.auth_type == auth_type)
    result = await session.execute(
        query.order_by(AuthenticationProvider.position, AuthenticationProvider.id)
    )
    return list(result.scalars().all())


async def get_canvas_provider(
    session: AsyncSession, account_id: int
) -> AuthenticationProvider | None:
    providers = await list_active_providers(session, account_id, auth_type=AuthType.canvas)
    return providers[0] if providers else None


async def canvas_authentication(session: AsyncSession, account_id: int) -> bool:
    """An account with no providers configured falls back to built-in passwords."""
    providers = await list_active_providers(session, account_id)
    if not providers:
        return True
    return any(p.auth_type == AuthType.canvas for p in providers)


async def get_identity_provider(
    session: AsyncSession, identity: Identity
) -> AuthenticationProvider | None:
    if identity.authentication_provider_id is None:
        return None
    return await session.get(AuthenticationProvider, identity.authentication_provider_id)


async def is_passwordable(session: AsyncSession, identity: Identity) -> bool:
    provider = await get_identity_provider(session, identity)
    if provider is not None:
        return provider.auth_type == AuthType.canvas
    return await canvas_authentication(session, identity.account_id)

