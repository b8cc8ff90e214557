import pytest
from sqlalchemy import func, select

from backend.app.core.time import utcnow
from backend.app.models.communication_channel import CommunicationChannel
from backend.app.models.enums import AuthType, ChannelState, IdentityState, UserState
from backend.app.models.identity import Identity
from backend.app.models.user_account_association import UserAccountAssociation
from backend.app.services import job_service
from backend.app.services.identity_service import (
    NOTIFY_REGISTRATION,
    IdentityWritePipeline,
    create_identity,
    destroy_identity,
    is_valid_email,
    set_password,
)
from backend.app.services.outcomes import ValidationFailure
from backend.app.services.password_service import verify_password

PASSWORD = "correct horse"


async def _active_count(session, identifier):
    result = await session.execute(
        select(func.count(Identity.id)).where(
            func.lower(Identity.identifier) == identifier.lower(),
            Identity.state == IdentityState.active,
        )
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_email_required_account_rejects_plain_identifier(session, factory):
    account = await factory.account(email_identifiers_required=True)
    user = await factory.user()

    result = await create_identity(
        session,
        identifier="jdoe",
        account_id=account.id,
        user_id=user.id,
        password=PASSWORD,
        password_confirmation=PASSWORD,
    )

    assert isinstance(result, ValidationFailure)
    assert result.kinds("identifier") == {"not_email"}
    assert await _active_count(session, "jdoe") == 0

    ok = await factory.identity("jdoe@school.edu", account, user)
    assert ok.id is not None


@pytest.mark.parametrize(
    "identifier", ["a@b..com", "a..b@school.edu", "a@b.c,d", "\"@x.y", "two@@school.edu"]
)
@pytest.mark.asyncio
async def test_malformed_emails_are_rejected(session, factory, identifier):
    account = await factory.account(email_identifiers_required=True)
    user = await factory.user()

    result = await create_identity(
        session, identifier=identifier, account_id=account.id, user_id=user.id
    )

    assert not is_valid_email(identifier)
    assert isinstance(result, ValidationFailure)
    assert result.kinds("identifier") == {"not_email"}


def test_well_formed_emails_are_accepted():
    assert is_valid_email("first.last@school.edu")
    assert is_valid_email("first+tag@mail.school.edu")


@pytest.mark.asyncio
async def test_identifier_unique_per_account_and_provider_ignoring_case(session, factory):
    account = await factory.account()
    other_account = await factory.account(name="Other")
    ldap = await factory.provider(account, AuthType.ldap)
    first_user = await factory.user()
    second_user = await factory.user(name="Second")
    await factory.identity("a@b.com", account, first_user)

    duplicate = await create_identity(
        session, identifier="A@B.COM", account_id=account.id, user_id=second_user.id
    )
    assert isinstance(duplicate, ValidationFailure)
    assert duplicate.kinds("identifier") == {"taken"}

    # Another provider or another account is a different scope.
    with_provider = await factory.identity(
        "a@b.com", account, second_user, authentication_provider_id=ldap.id
    )
    elsewhere = await factory.identity("a@b.com", other_account, second_user)
    assert with_provider.id and elsewhere.id


@pytest.mark.asyncio
async def test_deleted_identity_frees_its_identifier(session, factory):
    account = await factory.account()
    user = await factory.user()
    identity = await factory.identity("reuse@b.com", account, user)

    await destroy_identity(session, identity)
    replacement = await factory.identity("reuse@b.com", account, user)

    assert replacement.id != identity.id
    assert await _active_count(session, "reuse@b.com") == 1


@pytest.mark.asyncio
async def test_sis_and_integration_ids_unique_within_account(session, factory):
    account = await factory.account()
    user = await factory.user()
    first = await factory.identity(
        "one@b.com", account, user, sis_identifier="S1", integration_identifier="I1"
    )
    await destroy_identity(session, first)

    # Deleted identities still hold their SIS id.
    sis_clash = await create_identity(
        session, identifier="two@b.com", account_id=account.id, user_id=user.id,
        sis_identifier="S1",
    )
    assert isinstance(sis_clash, ValidationFailure)
    assert sis_clash.kinds("sis_identifier") == {"taken"}

    integration_clash = await create_identity(
        session, identifier="three@b.com", account_id=account.id, user_id=user.id,
        integration_identifier="I1",
    )
    assert isinstance(integration_clash, ValidationFailure)
    assert integration_clash.kinds("integration_identifier") == {"taken"}


@pytest.mark.asyncio
async def test_storage_constraint_decides_when_checks_race(session, factory, monkeypatch):
    account = await factory.account()
    user = await factory.user()
    other = await factory.user(name="Other")
    await factory.identity("race@b.com", account, user)

    async def passed(self):
        return None

    # Both writers passed the early check; only the index can stop the second.
    monkeypatch.setattr(IdentityWritePipeline, "_check_unique_identifier", passed)

    result = await create_identity(
        session, identifier="RACE@b.com", account_id=account.id, user_id=other.id
    )

    assert isinstance(result, ValidationFailure)
    assert result.kinds("identifier") == {"taken"}
    assert await _active_count(session, "race@b.com") == 1


@pytest.mark.asyncio
async def test_storage_constraint_maps_sis_violation(session, factory, monkeypatch):
    account = await factory.account()
    user = await factory.user()
    await factory.identity("sis1@b.com", account, user, sis_identifier="S9")

    async def passed(self):
        return None

    monkeypatch.setattr(IdentityWritePipeline, "_check_unique_sis_identifier", passed)

    result = await create_identity(
        session, identifier="sis2@b.com", account_id=account.id, user_id=user.id,
        sis_identifier="S9",
    )

    assert isinstance(result, ValidationFailure)
    assert result.kinds("sis_identifier") == {"taken"}


@pytest.mark.asyncio
async def test_identity_must_live_on_root_account(session, factory):
    root = await factory.account()
    sub = await factory.account(name="Sub", parent_account_id=root.id)
    user = await factory.user()

    result = await create_identity(
        session, identifier="sub@b.com", account_id=sub.id, user_id=user.id
    )

    assert isinstance(result, ValidationFailure)
    assert result.kinds("account_id") == {"not_root"}


@pytest.mark.asyncio
async def test_identifier_length_and_printable(session, factory):
    account = await factory.account()
    user = await factory.user()

    too_long = await create_identity(
        session, identifier="x" * 101, account_id=account.id, user_id=user.id
    )
    control = await create_identity(
        session, identifier="bad\x00id", account_id=account.id, user_id=user.id
    )

    assert too_long.kinds("identifier") == {"length"}
    assert control.kinds("identifier") == {"invalid"}


@pytest.mark.asyncio
async def test_password_confirmation_and_length(session, factory):
    account = await factory.account()
    user = await factory.user()

    result = await create_identity(
        session,
        identifier="pw@b.com",
        account_id=account.id,
        user_id=user.id,
        password="short",
        password_confirmation="different",
    )

    assert result.kinds("password") == {"too_short"}
    assert result.kinds("password_confirmation") == {"confirmation"}


@pytest.mark.asyncio
async def test_identity_without_password_gets_temporary_one(session, factory):
    account = await factory.account()
    user = await factory.user()

    identity = await create_identity(
        session,
        identifier="temp@b.com",
        account_id=account.id,
        user_id=user.id,
        sis_identifier="  ",
    )

    assert identity.password_auto_generated
    assert identity.hashed_secret
    assert identity.sis_identifier is None

    updated = await set_password(
        session, identity, password="chosen-password", password_confirmation="chosen-password"
    )
    assert not updated.password_auto_generated
    assert verify_password("chosen-password", updated.hashed_secret).valid


@pytest.mark.asyncio
async def test_new_identity_adds_account_association(session, factory):
    account = await factory.account()
    user = await factory.user()
    pending = await factory.user(name="Pending", state=UserState.creation_pending)

    await factory.identity("assoc@b.com", account, user)
    await factory.identity("pending@b.com", account, pending)

    rows = (
        await session.execute(
            select(UserAccountAssociation.user_id).where(
                UserAccountAssociation.account_id == account.id
            )
        )
    ).scalars().all()
    assert rows == [user.id]


@pytest.mark.asyncio
async def test_destroy_is_soft_and_idempotent(session, factory, enqueued):
    account = await factory.account()
    user = await factory.user()
    identity = await factory.identity("gone@b.com", account, user)
    channel = CommunicationChannel(
        user_id=user.id,
        identity_id=identity.id,
        path="gone@b.com",
        path_type="email",
        state=ChannelState.active,
        created_at=utcnow(),
    )
    session.add(channel)
    await session.commit()

    await destroy_identity(session, identity)
    deleted_at = identity.deleted_at
    await destroy_identity(session, identity)

    stored = await session.get(Identity, identity.id)
    assert stored.state == IdentityState.deleted
    assert stored.deleted_at == deleted_at
    await session.refresh(channel)
    assert channel.state == ChannelState.retired
    assert enqueued == [(job_service.UPDATE_ACCOUNT_ASSOCIATIONS, [user.id])]


@pytest.mark.asyncio
async def test_registration_notice_sent_only_when_asked(session, factory, enqueued):
    account = await factory.account()
    user = await factory.user()

    quiet = await create_identity(
        session, identifier="quiet@b.com", account_id=account.id, user_id=user.id
    )
    noisy = await create_identity(
        session,
        identifier="noisy@b.com",
        account_id=account.id,
        user_id=user.id,
        send_notification=True,
    )
    rejected = await create_identity(
        session,
        identifier="noisy@b.com",
        account_id=account.id,
        user_id=user.id,
        send_notification=True,
    )

    assert quiet.id and noisy.id
    assert isinstance(rejected, ValidationFailure)
    assert enqueued == [(job_service.SEND_IDENTITY_NOTIFICATION, [NOTIFY_REGISTRATION, noisy.id])]
