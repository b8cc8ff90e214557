"""Resolve a submitted login and secret to one identity.

``authenticate`` loads every active identity with the identifier across the
candidate accounts, verifies each one (LDAP, then the SIS hash while the
secret is still system generated, then the password hash chain) and audits
every attempt through the lockout gate. A single owning user wins; a match on
the site admin account wins over everything else.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.time import utcnow
from backend.app.models.account import Account
from backend.app.models.authentication_provider import AuthenticationProvider
from backend.app.models.enums import IdentityState, LockoutState
from backend.app.models.identity import Identity
from backend.app.models.user import User
from backend.app.services import job_service
from backend.app.services.account_service import (
    get_canvas_provider,
    get_site_admin_account_id,
    is_passwordable,
    partition_by_shard,
)
from backend.app.services.identity_service import (
    NOTIFY_REGISTRATION_DONE,
    by_identifier,
    infer_auth_provider,
)
from backend.app.services.ldap_service import BindResult, LdapVerifier, bind_candidates
from backend.app.services.login_attempt_service import LoginRegistry, audit_login
from backend.app.services.outcomes import (
    AmbiguousUser,
    AuthenticationOutcome,
    ImpossibleCredentials,
    NoMatch,
    ResolvedIdentity,
    TooManyAttempts,
)
from backend.app.services.password_service import verify_password, verify_sis_hash
from backend.app.services.user_service import activate_email_channel, mark_registered

logger = logging.getLogger(__name__)


@dataclass
class Verification:
    valid: bool
    provider: AuthenticationProvider | None = None
    ldap_result: BindResult | None = None
    replacement_hash: str | None = None


async def verify_identity(
    session: AsyncSession,
    identity: Identity,
    secret: str,
    ldap_verifier: LdapVerifier | None = None,
) -> Verification:
    if identity.is_deleted or not secret:
        return Verification(False)

    if ldap_verifier is not None:
        providers = await bind_candidates(session, identity)
        if providers:
            result = await ldap_verifier.bind(identity.identifier, secret, providers)
            if result:
                provider = next(p for p in providers if p.id == result.provider_id)
                return Verification(True, provider=provider, ldap_result=result)

    if not await is_passwordable(session, identity):
        return Verification(False)

    valid = False
    replacement_hash = None
    # The SIS hash only counts until the user picks their own password.
    if identity.password_auto_generated:
        valid = verify_sis_hash(secret, identity.legacy_hash)
    if not valid:
        result = verify_password(secret, identity.hashed_secret)
        valid, replacement_hash = result.valid, result.replacement_hash
    if not valid:
        return Verification(False)
    provider = await get_canvas_provider(session, identity.account_id)
    return Verification(True, provider=provider, replacement_hash=replacement_hash)


async def load_candidates(
    session: AsyncSession, identifier: str, account_ids: list[int]
) -> list[Identity]:
    result = await session.execute(
        select(Identity)
        .where(
            by_identifier(identifier),
            Identity.account_id.in_(account_ids),
            Identity.state == IdentityState.active,
        )
        .order_by(Identity.account_id, Identity.id)
    )
    return list(result.scalars().all())


async def authenticate(
    session: AsyncSession,
    identifier: str,
    secret: str,
    account_ids: list[int],
    remote_address: str | None,
    *,
    registry: LoginRegistry,
    ldap_verifier: LdapVerifier | None = None,
) -> AuthenticationOutcome:
    if not identifier or not secret:
        logger.info("Impossible credentials: blank identifier or secret")
        return ImpossibleCredentials("blank")
    if len(identifier) > settings.max_submitted_identifier_length:
        logger.info(
            "Impossible credentials: identifier of length %s, invalidating session",
            len(identifier),
        )
        return ImpossibleCredentials("too_long")

    too_many_attempts = False
    matches: list[tuple[Identity, Verification]] = []
    partitions = await partition_by_shard(session, list(dict.fromkeys(account_ids)))
    for shard_id in sorted(partitions):
        for identity in await load_candidates(session, identifier, partitions[shard_id]):
            identity_id, account_id = identity.id, identity.account_id
            state = await registry.state(identity_id, remote_address)
            if state == LockoutState.locked:
                too_many_attempts = True
                await audit_login(
                    session,
                    registry,
                    identity_id=identity_id,
                    remote_address=remote_address,
                    succeeded=False,
                    blocked=True,
                )
                continue
            try:
                # A failed query must not abort the transaction for later candidates.
                async with session.begin_nested():
                    verification = await verify_identity(
                        session, identity, secret, ldap_verifier
                    )
            except Exception:
                logger.exception(
                    "Credential check failed identity_id=%s account_id=%s",
                    identity_id,
                    account_id,
                )
                verification = Verification(False)
            await audit_login(
                session,
                registry,
                identity_id=identity_id,
                remote_address=remote_address,
                succeeded=verification.valid,
            )
            if verification.valid:
                matches.append((identity, verification))

    for identity, verification in matches:
        await _remember_credentials(session, identity, verification)

    chosen = await _choose_match(session, matches)
    became_registered = False
    if chosen is not None:
        became_registered = await _login_assertions(session, *chosen, remote_address)

    user_ids = sorted({identity.user_id for identity, _ in matches})
    chosen_id = chosen[0].id if chosen is not None else None
    try:
        await session.commit()
    except SQLAlchemyError:
        logger.exception("Could not persist login bookkeeping")
        await session.rollback()

    if chosen is not None:
        if became_registered:
            job_service.notify(NOTIFY_REGISTRATION_DONE, chosen_id)
        return ResolvedIdentity(chosen[0])
    if too_many_attempts:
        return TooManyAttempts()
    if len(user_ids) > 1:
        return AmbiguousUser(user_ids)
    return NoMatch()


async def _choose_match(
    session: AsyncSession, matches: list[tuple[Identity, Verification]]
) -> tuple[Identity, Verification] | None:
    if not matches:
        return None
    site_admin_id = await get_site_admin_account_id(session)
    for match in matches:
        if site_admin_id is not None and match[0].account_id == site_admin_id:
            return match
    if len({identity.user_id for identity, _ in matches}) == 1:
        return matches[0]
    return None


async def _remember_credentials(
    session: AsyncSession, identity: Identity, verification: Verification
) -> None:
    if verification.replacement_hash:
        identity.hashed_secret = verification.replacement_hash
    identity_id = identity.id
    try:
        async with session.begin_nested():
            await infer_auth_provider(session, identity, verification.provider)
    except Exception:
        logger.exception("Could not infer provider identity_id=%s", identity_id)
        await session.refresh(identity)


async def _login_assertions(
    session: AsyncSession,
    identity: Identity,
    verification: Verification,
    remote_address: str | None,
) -> bool:
    """Per-login bookkeeping. Returns True when the user just became registered."""
    now = utcnow()
    identity.login_count = (identity.login_count or 0) + 1
    identity.last_login_at = now
    identity.last_request_at = now
    identity.last_login_ip = remote_address

    identity_id = identity.id
    try:
        # Savepoint: the audit rows and login count survive a failed side effect.
        async with session.begin_nested():
            became_registered = await _login_side_effects(session, identity, verification)
    except Exception:
        logger.exception("Login side effects failed identity_id=%s", identity_id)
        await session.refresh(identity)
        return False
    return became_registered


async def _login_side_effects(
    session: AsyncSession, identity: Identity, verification: Verification
) -> bool:
    became_registered = False
    user = await session.get(User, identity.user_id)
    if user is not None:
        became_registered = await mark_registered(session, user)
        if not user.time_zone:
            account = await session.get(Account, identity.account_id)
            user.time_zone = account.default_time_zone if account else None
    await _add_ldap_channel(session, identity, verification.ldap_result)
    return became_registered


async def _add_ldap_channel(
    session: AsyncSession, identity: Identity, ldap_result: BindResult | None
) -> None:
    if ldap_result is None or not ldap_result.email:
        return
    channel = await activate_email_channel(
        session, user_id=identity.user_id, identity_id=identity.id, path=ldap_result.email
    )
    identity.communication_channel_id = channel.id
