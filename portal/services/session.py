from __future__ import annotations

import time
from typing import Any, Dict, Optional

from fastapi import Request, Response
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from portal.core.config import (
    SESSION_COOKIE_DOMAIN,
    SESSION_COOKIE_SAMESITE,
    SESSION_COOKIE_SECURE,
    SESSION_MAX_AGE_SECONDS,
    SESSION_SECRET,
)

SESSION_COOKIE = "portal_session"
SESSION_SALT = "portal-session"


def _serializer() -> URLSafeTimedSerializer:
    if not SESSION_SECRET:
        raise RuntimeError("SESSION_SECRET is not configured.")
    return URLSafeTimedSerializer(SESSION_SECRET, salt=SESSION_SALT)


def create_session(payload: Dict[str, Any], max_age_seconds: int = SESSION_MAX_AGE_SECONDS) -> str:
    if "exp" not in payload:
        payload = {**payload, "exp": int(time.time()) + max_age_seconds}
    return _serializer().dumps(payload)


def decode_session(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = _serializer().loads(token, max_age=SESSION_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired, ValueError):
        return None
    exp = payload.get("exp")
    if exp is not None:
        try:
            if int(exp) < int(time.time()):
                return None
        except (TypeError, ValueError):
            return None
    return payload


def build_session_cookie_options(request: Request | None = None) -> dict[str, Any]:
    secure = SESSION_COOKIE_SECURE
    if request is not None and request.url.scheme == "https":
        secure = True

    samesite = SESSION_COOKIE_SAMESITE
    # browsers drop SameSite=None cookies without Secure
    if samesite == "none" and not secure:
        samesite = "lax"

    return {
        "domain": SESSION_COOKIE_DOMAIN,
        "httponly": True,
        "samesite": samesite,
        "path": "/",
        "secure": secure,
    }


def set_session_cookie(
    response: Response,
    token: str,
    request: Request | None = None,
    max_age_seconds: int = SESSION_MAX_AGE_SECONDS,
) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        max_age=max_age_seconds,
        **build_session_cookie_options(request),
    )


def clear_session_cookie(response: Response, request: Request | None = None) -> None:
    response.delete_cookie(key=SESSION_COOKIE, **build_session_cookie_options(request))
