# portal/deps.py
from __future__ import annotations

from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.core.request_context import bind_request_value
from portal.models.user import User
from portal.services.auth import decode_access_token, extract_user_id
from portal.services.authorization_service import AuthorizationService
from portal.services.session import SESSION_COOKIE, decode_session

LOGIN_PAGE = "/portal/login"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _resolve_user_id(request: Request) -> Optional[int]:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        payload = decode_session(token)
        if payload and payload.get("user_id"):
            try:
                return int(payload["user_id"])
            except (TypeError, ValueError):
                return None

    bearer = _bearer_token(request)
    if bearer:
        try:
            payload = decode_access_token(bearer)
        except ValueError:
            return None
        return extract_user_id(payload)

    return None


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    user_id = _resolve_user_id(request)
    if user_id is None:
        return None

    user = db.query(User).filter(User.id == user_id, User.status == "ACTIVE").first()
    if user is None:
        return None

    bind_request_value("user_id", str(user.id))
    return user


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    user = get_optional_user(request, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_user_ui(request: Request, db: Session = Depends(get_db)) -> User:
    try:
        return get_current_user(request, db)
    except HTTPException as exc:
        raise HTTPException(status_code=303, headers={"Location": LOGIN_PAGE}) from exc


def require_role(roles: Iterable[str]):
    allowed = tuple(roles)

    def _dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        AuthorizationService.ensure_role(request=request, user=user, roles=allowed)
        return user

    return _dependency


def require_role_ui(roles: Iterable[str]):
    allowed = tuple(roles)

    def _dependency(request: Request, user: User = Depends(get_current_user_ui)) -> User:
        AuthorizationService.ensure_role(request=request, user=user, roles=allowed)
        return user

    return _dependency
