import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PASSWORD_SCRYPT_ROUNDS", "10")

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.app import models  # noqa: F401
from backend.app.core.time import utcnow
from backend.app.db.base import Base
from backend.app.models.account import Account
from backend.app.models.authentication_provider import AuthenticationProvider
from backend.app.models.enums import AuthType, UserState
from backend.app.models.user import User
from backend.app.services import job_service
from backend.app.services.identity_service import create_identity
from backend.app.services.login_attempt_service import LoginRegistry
from backend.app.services.outcomes import ValidationFailure

PASSWORD = "correct horse"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest properly on sqlite.
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with Session() as session:
        yield session


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def registry(redis):
    return LoginRegistry(redis, total_allowed=20, per_ip_allowed=3, warning_at=2, ttl_seconds=300)


@pytest.fixture(autouse=True)
def enqueued(monkeypatch):
    sent: list[tuple[str, list]] = []

    def send_task(name, args=None, **kwargs):
        sent.append((name, list(args or [])))

    monkeypatch.setattr(job_service.celery_app, "send_task", send_task)
    return sent


class Factory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def account(self, name="Account", **kwargs) -> Account:
        values = {
            "shard_id": 0,
            "is_site_admin": False,
            "email_identifiers_required": False,
            "persist_inferred_providers": False,
            "admins_can_change_passwords": False,
            **kwargs,
        }
        account = Account(name=name, created_at=utcnow(), **values)
        self.session.add(account)
        await self.session.commit()
        return account

    async def user(self, name="User", state=UserState.pre_registered) -> User:
        user = User(name=name, state=state, created_at=utcnow())
        self.session.add(user)
        await self.session.commit()
        return user

    async def provider(self, account: Account, auth_type=AuthType.ldap, **kwargs):
        provider = AuthenticationProvider(
            account_id=account.id,
            auth_type=auth_type,
            ldap_use_tls=False,
            created_at=utcnow(),
            **kwargs,
        )
        self.session.add(provider)
        await self.session.commit()
        return provider

    async def identity(self, identifier, account, user, password=PASSWORD, **kwargs):
        result = await create_identity(
            self.session,
            identifier=identifier,
            account_id=account.id,
            user_id=user.id,
            password=password,
            password_confirmation=password,
            **kwargs,
        )
        assert not isinstance(result, ValidationFailure), result
        return result


@pytest.fixture
def factory(session):
    return Factory(session)
