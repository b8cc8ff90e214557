import time
from types import SimpleNamespace

import pytest
from ldap3.core.exceptions import LDAPStartTLSError

from backend.app.models.enums import AuthType, ProviderState
from backend.app.services import ldap_service
from backend.app.services.errors import TransportFailure
from backend.app.services.ldap_service import (
    BindResult,
    LdapVerifier,
    bind_candidates,
    ldap3_bind,
)


def _providers(*ids):
    return [SimpleNamespace(id=provider_id) for provider_id in ids]


@pytest.mark.asyncio
async def test_unbound_identity_tries_every_active_ldap_provider(session, factory):
    account = await factory.account()
    second = await factory.provider(account, AuthType.ldap, position=2)
    first = await factory.provider(account, AuthType.ldap, position=1)
    await factory.provider(account, AuthType.ldap, state=ProviderState.deleted)
    await factory.provider(account, AuthType.canvas)
    identity = await factory.identity("someone", account, await factory.user())

    providers = await bind_candidates(session, identity)

    assert [p.id for p in providers] == [first.id, second.id]


@pytest.mark.asyncio
async def test_bound_identity_only_uses_its_provider(session, factory):
    account = await factory.account()
    await factory.provider(account, AuthType.ldap)
    own = await factory.provider(account, AuthType.ldap)
    canvas = await factory.provider(account, AuthType.canvas)
    user = await factory.user()
    ldap_bound = await factory.identity("a", account, user, authentication_provider_id=own.id)
    canvas_bound = await factory.identity(
        "b", account, user, authentication_provider_id=canvas.id
    )

    assert [p.id for p in await bind_candidates(session, ldap_bound)] == [own.id]
    assert await bind_candidates(session, canvas_bound) == []


@pytest.mark.asyncio
async def test_first_successful_bind_wins():
    calls = []

    def binder(provider, identifier, secret):
        calls.append(provider.id)
        if provider.id == 1:
            raise TransportFailure("connection refused")
        return BindResult(provider_id=provider.id, dn=f"uid={identifier}")

    verifier = LdapVerifier(binder=binder, timeout=1)
    result = await verifier.bind("jdoe", "s3cret", _providers(1, 2, 3))

    assert result.provider_id == 2
    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_slow_and_broken_directories_are_skipped():
    def binder(provider, identifier, secret):
        if provider.id == 1:
            time.sleep(0.5)
        if provider.id == 2:
            raise RuntimeError("unexpected")
        return None

    result = await LdapVerifier(binder=binder, timeout=0.05).bind(
        "jdoe", "s3cret", _providers(1, 2, 3)
    )

    assert result is None


@pytest.mark.asyncio
async def test_blank_secret_never_binds():
    def binder(provider, identifier, secret):
        raise AssertionError("bind attempted")

    assert await LdapVerifier(binder=binder).bind("jdoe", "", _providers(1)) is None


def test_bind_result_email():
    assert BindResult(1, "dn", {"mail": ["a@b.c", "x@y.z"]}).email == "a@b.c"
    assert BindResult(1, "dn").email is None


class FakeConnection:
    opened: list["FakeConnection"] = []

    def __init__(self, server, user=None, password=None, receive_timeout=None):
        self.user = user
        self.unbound = False
        self.entries = [
            SimpleNamespace(entry_dn="uid=jdoe,dc=school", entry_attributes_as_dict={})
        ]
        self.result = {}
        FakeConnection.opened.append(self)

    def open(self):
        pass

    def start_tls(self):
        # The service account connects fine; the user connection fails.
        if len(FakeConnection.opened) > 1:
            raise LDAPStartTLSError("handshake failed")

    def bind(self):
        return True

    def search(self, base, search_filter, attributes=None):
        return True

    def unbind(self):
        self.unbound = True


def test_failed_tls_upgrade_closes_every_connection(monkeypatch):
    FakeConnection.opened = []
    monkeypatch.setattr(ldap_service, "Connection", FakeConnection)
    provider = SimpleNamespace(
        id=1,
        ldap_host="ldap.school.edu",
        ldap_port=None,
        ldap_use_tls=True,
        ldap_base_dn="dc=school",
        ldap_filter=None,
        ldap_bind_dn="cn=service",
        ldap_bind_password="service secret",
    )

    with pytest.raises(TransportFailure):
        ldap3_bind(provider, "jdoe", "s3cret")

    assert [conn.user for conn in FakeConnection.opened] == ["cn=service", "uid=jdoe,dc=school"]
    assert all(conn.unbound for conn in FakeConnection.opened)
