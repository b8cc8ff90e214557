"""Credential checks against an account's LDAP directories.

Binds are blocking ldap3 calls, so each one runs in a worker thread under its
own timeout. A slow or broken directory only costs that one provider; errors
are logged and the next provider is tried.
"""
import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from ldap3 import NONE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.models.authentication_provider import AuthenticationProvider
from backend.app.models.enums import AuthType
from backend.app.models.identity import Identity
from backend.app.services.account_service import get_identity_provider, list_active_providers
from backend.app.services.errors import TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_FILTER = "(uid={login})"
LDAP_ATTRIBUTES = ["mail"]


@dataclass(frozen=True)
class BindResult:
    provider_id: int
    dn: str
    attributes: dict[str, list[str]] = field(default_factory=dict)

    @property
    def email(self) -> str | None:
        values = self.attributes.get("mail") or []
        return values[0] if values else None


Binder = Callable[[AuthenticationProvider, str, str], BindResult | None]


def _connection(
    server: Server, user: str | None, password: str | None, use_tls: bool, timeout: float
) -> Connection:
    conn = Connection(server, user=user, password=password, receive_timeout=timeout)
    conn.open()
    if use_tls:
        try:
            conn.start_tls()
        except Exception:
            conn.unbind()
            raise
    return conn


def ldap3_bind(provider: AuthenticationProvider, identifier: str, secret: str) -> BindResult | None:
    """Look the login up with the service account, then bind as the found DN."""
    if not secret or not provider.ldap_host:
        return None
    timeout = settings.ldap_bind_timeout_seconds
    server = Server(
        provider.ldap_host,
        port=provider.ldap_port or 389,
        get_info=NONE,
        connect_timeout=timeout,
    )
    search_filter = (provider.ldap_filter or DEFAULT_FILTER).replace(
        "{login}", escape_filter_chars(identifier)
    )
    service = None
    try:
        service = _connection(
            server, provider.ldap_bind_dn, provider.ldap_bind_password, provider.ldap_use_tls, timeout
        )
        if not service.bind():
            raise TransportFailure(f"service bind rejected: {service.result.get('description')}")
        service.search(provider.ldap_base_dn or "", search_filter, attributes=LDAP_ATTRIBUTES)
        if not service.entries:
            return None
        entry = service.entries[0]
        user_conn = _connection(server, entry.entry_dn, secret, provider.ldap_use_tls, timeout)
        try:
            if not user_conn.bind():
                return None
        finally:
            user_conn.unbind()
        attributes = {
            name: [str(value) for value in values]
            for name, values in entry.entry_attributes_as_dict.items()
        }
        return BindResult(provider_id=provider.id, dn=entry.entry_dn, attributes=attributes)
    except LDAPException as exc:
        raise TransportFailure(str(exc)) from exc
    finally:
        if service is not None:
            service.unbind()


async def bind_candidates(
    session: AsyncSession, identity: Identity
) -> list[AuthenticationProvider]:
    provider = await get_identity_provider(session, identity)
    if provider is None:
        return await list_active_providers(session, identity.account_id, auth_type=AuthType.ldap)
    if provider.auth_type == AuthType.ldap:
        return [provider]
    return []


class LdapVerifier:
    def __init__(self, binder: Binder = ldap3_bind, timeout: float | None = None):
        self.binder = binder
        self.timeout = timeout if timeout is not None else settings.ldap_bind_timeout_seconds

    async def bind(
        self, identifier: str, secret: str, providers: list[AuthenticationProvider]
    ) -> BindResult | None:
        if not secret:
            return None
        for provider in providers:
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(self.binder, provider, identifier, secret),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "LDAP bind timed out provider_id=%s identifier=%s", provider.id, identifier
                )
                continue
            except TransportFailure as exc:
                logger.warning(
                    "LDAP authentication error provider_id=%s identifier=%s: %s",
                    provider.id,
                    identifier,
                    exc,
                )
                continue
            except Exception:
                logger.exception(
                    "LDAP authentication error provider_id=%s identifier=%s", provider.id, identifier
                )
                continue
            if result:
                return result
        return None
