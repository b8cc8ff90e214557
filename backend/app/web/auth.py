import secrets

from fastapi import Depends, HTTPException, Request, Response, status
from itsdangerous import BadSignature, URLSafeTimedSerializer

from backend.app.core.config import settings

SESSION_COOKIE = "session"
SESSION_MAX_AGE = 60 * 60 * 12


def get_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.session_secret, salt="login-session")


def create_session_cookie(identity_id: int, ticket: str | None = None) -> str:
    serializer = get_serializer()
    return serializer.dumps(
        {"i": identity_id, "t": ticket, "csrf": secrets.token_urlsafe(16)}
    )


def clear_session(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE)


def set_session_cookie(response: Response, value: str) -> None:
    secure = settings.environment.lower() not in {"local", "dev", "development", "test"}
    response.set_cookie(
        SESSION_COOKIE,
        value,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )


def get_session_data(request: Request) -> dict:
    cookie = request.cookies.get(SESSION_COOKIE)
    if not cookie:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    serializer = get_serializer()
    try:
        data = serializer.loads(cookie, max_age=SESSION_MAX_AGE)
    except BadSignature as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED) from exc
    return data


def get_current_identity_id(request: Request) -> int:
    data = get_session_data(request)
    identity_id = data.get("i")
    if identity_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return identity_id


def verify_csrf(request: Request, token: str) -> None:
    expected = get_session_data(request).get("csrf")
    if not expected or token != expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)


def login_required(identity_id: int = Depends(get_current_identity_id)) -> int:
    return identity_id
