from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.auth import create_access_token
from portal.services.login_attempts import (
    check_login_lock,
    clear_login_attempts,
    register_failed_login,
)
from portal.services.passwords import verify_password
from portal.services.session import (
    build_session_cookie_options,
    clear_session_cookie,
    create_session,
    set_session_cookie,
)
from portal.services.settings_service import security_setting

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
logger = logging.getLogger(__name__)

LOCKED_MESSAGE = "Too many attempts. Try again in a few minutes."


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


def serialize_principal(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "user_type": user.user_type,
        "status": user.status,
        "customer_id": user.customer_id,
        "departments": user.departments or [],
    }


def authenticate(db: Session, *, email: str, password: str, ip_address: str) -> User:
    """Shared by the JSON login and the HTML login form; commits the audit trail."""
    normalized_email = email.strip().lower()

    locked, _ = check_login_lock(db, normalized_email)
    if locked:
        log_action(
            db,
            action="LOGIN_LOCKED",
            entity_type="user",
            ip_address=ip_address,
            details={"email": normalized_email},
        )
        db.commit()
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=LOCKED_MESSAGE)

    user = db.query(User).filter(func.lower(User.email) == normalized_email).first()
    if not user or user.status != "ACTIVE" or not verify_password(password, user.password_hash):
        max_attempts = int(security_setting(db, "max_login_attempts") or 5)
        _, locked_after = register_failed_login(db, normalized_email, max_attempts)
        log_action(
            db,
            action="LOGIN_FAILED",
            entity_type="user",
            entity_id=user.id if user else None,
            ip_address=ip_address,
            details={"email": normalized_email},
        )
        db.commit()
        if locked_after:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=LOCKED_MESSAGE)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    clear_login_attempts(db, normalized_email)
    user.last_login_at = datetime.utcnow()
    log_action(db, action="LOGIN", entity_type="user", entity_id=user.id, actor=user, ip_address=ip_address)
    db.commit()
    return user


def session_max_age(db: Session) -> int:
    minutes = int(security_setting(db, "session_timeout") or 30)
    return max(minutes, 1) * 60


@router.post("/login")
def login(
    payload: LoginPayload,
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
):
    user = authenticate(db, email=payload.email, password=payload.password, ip_address=client_ip(request))

    max_age = session_max_age(db)
    token = create_session({"user_id": user.id, "role": user.role}, max_age_seconds=max_age)
    cookie_options = build_session_cookie_options(request)
    logger.info(
        "[AUTH_COOKIE] setting portal_session samesite=%s secure=%s",
        cookie_options["samesite"],
        cookie_options["secure"],
    )
    set_session_cookie(response, token, request, max_age_seconds=max_age)

    return {
        "user": serialize_principal(user),
        "access_token": create_access_token(user.id, {"role": user.role}),
        "token_type": "bearer",
    }


@router.post("/logout")
def logout(response: Response, request: Request):
    clear_session_cookie(response, request)
    return {"ok": True}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return serialize_principal(user)
