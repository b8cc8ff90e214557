import logging

from fastapi import APIRouter, Depends, Form, Request, Response, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.redis import get_redis
from backend.app.db.session import get_session
from backend.app.services.account_service import get_site_admin_account_id
from backend.app.services.authentication_service import authenticate
from backend.app.services.ldap_service import LdapVerifier
from backend.app.services.login_attempt_service import LoginRegistry
from backend.app.services.outcomes import (
    ImpossibleCredentials,
    ResolvedIdentity,
    TooManyAttempts,
)
from backend.app.services.ticket_service import expire_ticket, is_ticket_expired
from backend.app.web.auth import (
    clear_session,
    create_session_cookie,
    get_session_data,
    login_required,
    set_session_cookie,
    verify_csrf,
)

logger = logging.getLogger(__name__)

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


def get_login_registry(redis: Redis = Depends(get_redis)) -> LoginRegistry:
    return LoginRegistry(redis)


def get_ldap_verifier() -> LdapVerifier:
    return LdapVerifier()


def client_ip(request: Request) -> str:
    peer = get_remote_address(request)
    if peer not in settings.trusted_proxies:
        return peer
    # The last hop is the one our proxy saw; earlier entries are client supplied.
    forwarded = [
        address.strip()
        for address in request.headers.get("x-forwarded-for", "").split(",")
        if address.strip()
    ]
    return forwarded[-1] if forwarded else peer


@router.post("/login")
@limiter.limit(settings.login_rate_limit)
async def login_action(
    request: Request,
    unique_id: str = Form(""),
    password: str = Form(""),
    account_id: int = Form(...),
    ticket: str | None = Form(None),
    session: AsyncSession = Depends(get_session),
    registry: LoginRegistry = Depends(get_login_registry),
    ldap_verifier: LdapVerifier = Depends(get_ldap_verifier),
):
    account_ids = [account_id]
    site_admin_id = await get_site_admin_account_id(session)
    if site_admin_id is not None and site_admin_id != account_id:
        account_ids.append(site_admin_id)

    ip = client_ip(request)
    outcome = await authenticate(
        session,
        unique_id.strip(),
        password,
        account_ids,
        ip,
        registry=registry,
        ldap_verifier=ldap_verifier,
    )

    if isinstance(outcome, ResolvedIdentity):
        identity = outcome.identity
        response = JSONResponse(
            {"status": "ok", "identity_id": identity.id, "user_id": identity.user_id}
        )
        set_session_cookie(response, create_session_cookie(identity.id, ticket))
        return response

    if isinstance(outcome, TooManyAttempts):
        logger.info("Login locked out identifier=%s ip=%s", unique_id, ip)
        response = JSONResponse(
            {"status": "too_many_attempts"}, status_code=status.HTTP_429_TOO_MANY_REQUESTS
        )
        clear_session(response)
        return response

    if isinstance(outcome, ImpossibleCredentials):
        response = JSONResponse(
            {"status": "impossible_credentials"}, status_code=status.HTTP_401_UNAUTHORIZED
        )
        clear_session(response)
        return response

    return JSONResponse(
        {"status": "invalid_credentials"}, status_code=status.HTTP_401_UNAUTHORIZED
    )


@router.get("/session")
async def session_info(
    request: Request,
    identity_id: int = Depends(login_required),
    redis: Redis = Depends(get_redis),
):
    ticket = get_session_data(request).get("t")
    if ticket and await is_ticket_expired(redis, ticket):
        response = JSONResponse(
            {"status": "session_expired"}, status_code=status.HTTP_401_UNAUTHORIZED
        )
        clear_session(response)
        return response
    return {"status": "ok", "identity_id": identity_id}


@router.post("/logout")
async def logout_action(
    request: Request,
    csrf_token: str = Form(...),
    redis: Redis = Depends(get_redis),
):
    verify_csrf(request, csrf_token)
    ticket = get_session_data(request).get("t")
    if ticket:
        await expire_ticket(redis, ticket)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session(response)
    return response
