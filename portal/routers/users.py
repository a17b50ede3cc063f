from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user, require_role
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.authorization_service import MANAGER_ROLES, AuthorizationService
from portal.services.cascade import delete_entity
from portal.services.pagination import DEFAULT_PAGE_SIZE, in_department, paginate, paginate_items
from portal.services.passwords import hash_password, validate_password_strength, verify_password
from portal.services.settings_service import security_setting

router = APIRouter(prefix="/api/v1/users", tags=["users"])
logger = logging.getLogger(__name__)

StaffRole = Literal["ADMIN", "MANAGER", "MITARBEITER"]
UserStatus = Literal["ACTIVE", "INACTIVE", "PENDING"]
Department = Literal["IT", "DATENSCHUTZ"]


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1)
    role: StaffRole = "MITARBEITER"
    status: UserStatus = "ACTIVE"
    phone: Optional[str] = None
    departments: List[Department] = Field(default_factory=list)


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    role: Optional[StaffRole] = None
    status: Optional[UserStatus] = None
    phone: Optional[str] = None
    departments: Optional[List[Department]] = None

    @field_validator("email", "name", "role", "status", "departments")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "user_type": user.user_type,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "status": user.status,
        "phone": user.phone,
        "departments": user.departments or [],
        "customer_id": user.customer_id,
        "last_login_at": user.last_login_at,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def ensure_email_available(db: Session, email: str, exclude_id: Optional[int] = None) -> str:
    normalized = email.strip().lower()
    query = db.query(User.id).filter(func.lower(User.email) == normalized)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")
    return normalized


def ensure_password_policy(db: Session, password: str) -> None:
    min_length = int(security_setting(db, "password_min_length") or 8)
    message = validate_password_strength(password, min_length)
    if message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def change_password(
    db: Session,
    *,
    target: User,
    actor: User,
    payload: PasswordChange,
    request: Request,
) -> Dict[str, Any]:
    if actor.id != target.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only change your own password")
    if not verify_password(payload.current_password, target.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    ensure_password_policy(db, payload.new_password)

    target.password_hash = hash_password(payload.new_password)
    target.updated_at = datetime.utcnow()
    log_action(
        db,
        action="PASSWORD_CHANGE",
        entity_type=target.user_type.lower(),
        entity_id=target.id,
        actor=actor,
        ip_address=client_ip(request),
    )
    db.commit()
    return {"message": "Password updated successfully"}


def _get_staff_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id, User.user_type == "STAFF").first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("")
def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    department: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    _user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    query = db.query(User).filter(User.user_type == "STAFF")
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if role and role != "all":
        query = query.filter(User.role == role)
    if status_filter and status_filter != "all":
        query = query.filter(User.status == status_filter)

    rows = query.order_by(User.created_at.desc(), User.id.desc())
    if department and department != "all":
        matching = [row for row in rows.all() if in_department(row, department)]
        page_rows, pagination = paginate_items(matching, page, limit)
    else:
        page_rows, pagination = paginate(rows, page, limit)

    return {"data": [serialize_user(row) for row in page_rows], "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    request: Request,
    user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    email = ensure_email_available(db, payload.email)
    ensure_password_policy(db, payload.password)

    now = datetime.utcnow()
    created = User(
        user_type="STAFF",
        email=email,
        name=payload.name.strip(),
        password_hash=hash_password(payload.password),
        role=payload.role,
        status=payload.status,
        phone=payload.phone,
        departments=list(payload.departments),
        created_at=now,
        updated_at=now,
    )
    db.add(created)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="user",
        entity_id=created.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"after": payload.model_dump(exclude={"password"})},
    )
    db.commit()
    db.refresh(created)
    logger.info("Staff user created id=%s role=%s", created.id, created.role)
    return serialize_user(created)


@router.get("/{user_id}")
def get_user(
    user_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if user.id != user_id:
        AuthorizationService.ensure_role(request=request, user=user, roles=MANAGER_ROLES)
    return serialize_user(_get_staff_or_404(db, user_id))


@router.put("/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdate,
    request: Request,
    user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    target = _get_staff_or_404(db, user_id)
    updates = payload.model_dump(exclude_unset=True)
    if "email" in updates and updates["email"] is not None:
        updates["email"] = ensure_email_available(db, updates["email"], exclude_id=target.id)

    before = serialize_user(target)
    for key, value in updates.items():
        setattr(target, key, value)
    target.updated_at = datetime.utcnow()
    db.flush()

    after = serialize_user(target)
    log_action(
        db,
        action="UPDATE",
        entity_type="user",
        entity_id=target.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"before": before, "after": after},
    )
    db.commit()
    return after


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    request: Request,
    user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    if user.id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own account")

    result = delete_entity(
        db,
        kind="user",
        entity_id=user_id,
        actor=user,
        ip_address=client_ip(request),
    )
    if result.root_deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {"message": "User deleted successfully", **result.as_dict()}


@router.put("/{user_id}/password")
def update_password(
    user_id: int,
    payload: PasswordChange,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = _get_staff_or_404(db, user_id)
    return change_password(db, target=target, actor=user, payload=payload, request=request)
