"""Identity writes and lifecycle.

Every create or update goes through ``IdentityWritePipeline``: ``validate``,
``before_write``, ``write``, ``after_write``, called in that order by
``save_identity``. Validation collects field errors instead of raising. The
database unique indexes have the final word; ``write`` turns an
``IntegrityError`` into the same ``ValidationFailure`` the checks produce.
"""
import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.time import utcnow
from backend.app.models.account import Account
from backend.app.models.authentication_provider import AuthenticationProvider
from backend.app.models.enums import IdentityState
from backend.app.models.identity import Identity
from backend.app.models.user import User
from backend.app.services import job_service
from backend.app.services.errors import IdentityNotFound
from backend.app.services.outcomes import FieldError, ValidationFailure
from backend.app.services.password_service import generate_temporary_password, hash_password
from backend.app.services.user_service import add_account_association, retire_identity_channels

logger = logging.getLogger(__name__)

NOTIFY_REGISTRATION = "pseudonym_registration"
NOTIFY_REGISTRATION_DONE = "pseudonym_registration_done"


def is_valid_email(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value


def by_identifier(identifier: str):
    return func.lower(Identity.identifier) == identifier.lower()


async def get_identity(session: AsyncSession, identity_id: int) -> Identity:
    identity = await session.get(Identity, identity_id)
    if not identity:
        raise IdentityNotFound(f"Identity {identity_id} not found")
    return identity


class IdentityWritePipeline:
    def __init__(
        self,
        session: AsyncSession,
        identity: Identity,
        *,
        password: str | None = None,
        password_confirmation: str | None = None,
    ):
        self.session = session
        self.identity = identity
        self.password = password
        self.password_confirmation = password_confirmation
        self.is_new = identity.id is None
        self.account: Account | None = None
        self.user: User | None = None
        self.account_changed = False

    async def validate(self) -> list[FieldError]:
        # Pending changes must not reach the database before the checks run.
        with self.session.no_autoflush:
            return await self._validate()

    async def _validate(self) -> list[FieldError]:
        self._infer_defaults()
        errors: list[FieldError] = []
        identity = self.identity

        identifier = identity.identifier or ""
        if not identifier or len(identifier) > settings.max_identifier_length:
            errors.append(FieldError("identifier", "length"))
        elif not identifier.isprintable():
            errors.append(FieldError("identifier", "invalid"))

        self.account = (
            await self.session.get(Account, identity.account_id) if identity.account_id else None
        )
        if self.account is None:
            errors.append(FieldError("account_id", "blank"))
        elif not self.account.is_root_account:
            errors.append(
                FieldError("account_id", "not_root", "must belong to a root account")
            )

        self.user = await self.session.get(User, identity.user_id) if identity.user_id else None
        if self.user is None:
            errors.append(FieldError("user_id", "blank"))

        if identity.authentication_provider_id is not None:
            provider = await self.session.get(
                AuthenticationProvider, identity.authentication_provider_id
            )
            if provider is None or provider.account_id != identity.account_id:
                errors.append(FieldError("authentication_provider_id", "invalid"))

        errors.extend(self._validate_password())
        if errors:
            return errors

        # The remaining checks stop at the first failure.
        for check in (
            self._check_email_format,
            self._check_unique_identifier,
            self._check_unique_sis_identifier,
            self._check_unique_integration_identifier,
        ):
            error = await check()
            if error:
                return [error]
        return []

    def _infer_defaults(self) -> None:
        identity = self.identity
        identity.sis_identifier = _blank_to_none(identity.sis_identifier)
        identity.integration_identifier = _blank_to_none(identity.integration_identifier)
        if identity.state is None:
            identity.state = IdentityState.active
        if not identity.hashed_secret and self.password is None:
            identity.hashed_secret = hash_password(generate_temporary_password())
            identity.password_auto_generated = True

    def _validate_password(self) -> list[FieldError]:
        if self.password is None:
            return []
        errors = []
        if len(self.password) < settings.password_min_length:
            errors.append(FieldError("password", "too_short"))
        if self.password_confirmation is None:
            errors.append(FieldError("password_confirmation", "blank"))
        elif self.password_confirmation != self.password:
            errors.append(FieldError("password_confirmation", "confirmation"))
        return errors

    async def _check_email_format(self) -> FieldError | None:
        if self.identity.is_deleted or not self.account.email_identifiers_required:
            return None
        if is_valid_email(self.identity.identifier):
            return None
        return FieldError("identifier", "not_email")

    async def _others(self, *criteria) -> bool:
        query = select(Identity.id).where(*criteria)
        if self.identity.id is not None:
            query = query.where(Identity.id != self.identity.id)
        result = await self.session.execute(query.limit(1))
        return result.first() is not None

    async def _check_unique_identifier(self) -> FieldError | None:
        identity = self.identity
        if identity.is_deleted:
            return None
        provider_id = identity.authentication_provider_id
        taken = await self._others(
            by_identifier(identity.identifier),
            Identity.account_id == identity.account_id,
            Identity.state == IdentityState.active,
            Identity.authentication_provider_id.is_(None)
            if provider_id is None
            else Identity.authentication_provider_id == provider_id,
        )
        if taken:
            return FieldError(
                "identifier",
                "taken",
                "ID already in use for this account and authentication provider",
            )
        return None

    async def _check_unique_sis_identifier(self) -> FieldError | None:
        sis_identifier = self.identity.sis_identifier
        if not sis_identifier:
            return None
        taken = await self._others(
            Identity.account_id == self.identity.account_id,
            Identity.sis_identifier == sis_identifier,
        )
        if taken:
            return FieldError(
                "sis_identifier", "taken", f'SIS ID "{sis_identifier}" is already in use'
            )
        return None

    async def _check_unique_integration_identifier(self) -> FieldError | None:
        integration_identifier = self.identity.integration_identifier
        if not integration_identifier:
            return None
        taken = await self._others(
            Identity.account_id == self.identity.account_id,
            Identity.integration_identifier == integration_identifier,
        )
        if taken:
            return FieldError(
                "integration_identifier",
                "taken",
                f'Integration ID "{integration_identifier}" is already in use',
            )
        return None

    async def before_write(self) -> None:
        identity = self.identity
        now = utcnow()
        if self.password is not None:
            identity.hashed_secret = hash_password(self.password)
            identity.password_auto_generated = False
        if self.is_new:
            identity.created_at = now
        else:
            self.account_changed = inspect(identity).attrs.account_id.history.has_changes()
        identity.updated_at = now

    async def write(self) -> ValidationFailure | None:
        account_id = self.identity.account_id
        if self.is_new:
            self.session.add(self.identity)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            error = _constraint_error(exc)
            logger.info(
                "Identity write rejected by storage constraint field=%s account_id=%s",
                error.field,
                account_id,
            )
            return ValidationFailure([error])
        return None

    async def after_write(self) -> None:
        identity = self.identity
        if self.is_new:
            if self.user is not None:
                await add_account_association(
                    self.session, user=self.user, account_id=identity.account_id
                )
                await self.session.commit()
        elif self.account_changed:
            job_service.update_account_associations_later(identity.user_id)


def _constraint_error(exc: IntegrityError) -> FieldError:
    message = str(exc.orig)
    if "sis_identifier" in message or "uq_identities_account_sis" in message:
        return FieldError("sis_identifier", "taken")
    if "integration_identifier" in message or "uq_identities_account_integration" in message:
        return FieldError("integration_identifier", "taken")
    return FieldError("identifier", "taken")


async def save_identity(
    session: AsyncSession,
    identity: Identity,
    *,
    password: str | None = None,
    password_confirmation: str | None = None,
) -> Identity | ValidationFailure:
    pipeline = IdentityWritePipeline(
        session, identity, password=password, password_confirmation=password_confirmation
    )
    errors = await pipeline.validate()
    if errors:
        return ValidationFailure(errors)
    await pipeline.before_write()
    failure = await pipeline.write()
    if failure:
        return failure
    await pipeline.after_write()
    return identity


async def create_identity(
    session: AsyncSession,
    *,
    identifier: str,
    account_id: int,
    user_id: int,
    authentication_provider_id: int | None = None,
    password: str | None = None,
    password_confirmation: str | None = None,
    sis_identifier: str | None = None,
    integration_identifier: str | None = None,
    legacy_hash: str | None = None,
    send_notification: bool = False,
) -> Identity | ValidationFailure:
    identity = Identity(
        identifier=identifier,
        account_id=account_id,
        user_id=user_id,
        authentication_provider_id=authentication_provider_id,
        sis_identifier=sis_identifier,
        integration_identifier=integration_identifier,
        legacy_hash=legacy_hash,
        state=IdentityState.active,
        login_count=0,
        position=0,
        password_auto_generated=False,
    )
    result = await save_identity(
        session, identity, password=password, password_confirmation=password_confirmation
    )
    if send_notification and not isinstance(result, ValidationFailure):
        send_registration_notification(result)
    return result


async def set_password(
    session: AsyncSession, identity: Identity, *, password: str, password_confirmation: str
) -> Identity | ValidationFailure:
    return await save_identity(
        session, identity, password=password, password_confirmation=password_confirmation
    )


async def destroy_identity(session: AsyncSession, identity: Identity) -> Identity:
    """Soft delete. Repeated calls leave the identity deleted and do nothing else."""
    if identity.is_deleted:
        return identity
    now = utcnow()
    identity.state = IdentityState.deleted
    identity.deleted_at = now
    identity.updated_at = now
    await retire_identity_channels(session, identity)
    await session.commit()
    job_service.update_account_associations_later(identity.user_id)
    return identity


async def infer_auth_provider(
    session: AsyncSession, identity: Identity, provider: AuthenticationProvider | None
) -> bool:
    """Bind an unbound identity to the provider that just authenticated it."""
    if provider is None or identity.authentication_provider_id is not None:
        return False
    account = await session.get(Account, identity.account_id)
    if account is None or not account.persist_inferred_providers:
        return False
    identity.authentication_provider_id = provider.id
    return True


def send_registration_notification(identity: Identity) -> bool:
    return job_service.notify(NOTIFY_REGISTRATION, identity.id)
