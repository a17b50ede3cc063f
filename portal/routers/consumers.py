from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user, require_role
from portal.models.customer import Customer
from portal.models.user import User
from portal.routers.users import (
    PasswordChange,
    change_password,
    ensure_email_available,
    ensure_password_policy,
    serialize_user,
)
from portal.services.audit import log_action
from portal.services.authorization_service import CONSUMER_ROLE, MANAGER_ROLES, AuthorizationService
from portal.services.cascade import delete_entity
from portal.services.pagination import DEFAULT_PAGE_SIZE, paginate
from portal.services.passwords import hash_password

router = APIRouter(prefix="/api/v1/consumers", tags=["consumers"])
logger = logging.getLogger(__name__)

UserStatus = Literal["ACTIVE", "INACTIVE", "PENDING"]


class ConsumerCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1)
    customer_id: int = Field(..., ge=1)
    status: UserStatus = "ACTIVE"
    phone: Optional[str] = None


class ConsumerUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    customer_id: Optional[int] = Field(None, ge=1)
    status: Optional[UserStatus] = None
    phone: Optional[str] = None

    @field_validator("email", "name", "customer_id", "status")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


def _get_consumer_or_404(db: Session, consumer_id: int) -> User:
    consumer = db.query(User).filter(User.id == consumer_id, User.user_type == "CONSUMER").first()
    if consumer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Consumer not found")
    return consumer


def _ensure_customer(db: Session, customer_id: Optional[int]) -> None:
    if customer_id is not None and db.query(Customer.id).filter(Customer.id == customer_id).first() is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Customer does not exist")


@router.get("")
def list_consumers(
    search: Optional[str] = None,
    customer_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    _user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    query = db.query(User).filter(User.user_type == "CONSUMER")
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    if customer_id is not None:
        query = query.filter(User.customer_id == customer_id)
    if status_filter and status_filter != "all":
        query = query.filter(User.status == status_filter)

    rows, pagination = paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)
    return {"data": [serialize_user(row) for row in rows], "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_consumer(
    payload: ConsumerCreate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    email = ensure_email_available(db, payload.email)
    _ensure_customer(db, payload.customer_id)
    ensure_password_policy(db, payload.password)

    now = datetime.utcnow()
    consumer = User(
        user_type="CONSUMER",
        email=email,
        name=payload.name.strip(),
        password_hash=hash_password(payload.password),
        role=CONSUMER_ROLE,
        status=payload.status,
        phone=payload.phone,
        customer_id=payload.customer_id,
        departments=[],
        created_at=now,
        updated_at=now,
    )
    db.add(consumer)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="consumer",
        entity_id=consumer.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"after": payload.model_dump(exclude={"password"})},
    )
    db.commit()
    db.refresh(consumer)
    logger.info("Consumer created id=%s customer_id=%s", consumer.id, consumer.customer_id)
    return serialize_user(consumer)


@router.get("/{consumer_id}")
def get_consumer(
    consumer_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if user.id != consumer_id:
        AuthorizationService.ensure_role(request=request, user=user, roles=MANAGER_ROLES)
    return serialize_user(_get_consumer_or_404(db, consumer_id))


@router.put("/{consumer_id}")
def update_consumer(
    consumer_id: int,
    payload: ConsumerUpdate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    consumer = _get_consumer_or_404(db, consumer_id)
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("email") is not None:
        updates["email"] = ensure_email_available(db, updates["email"], exclude_id=consumer.id)
    _ensure_customer(db, updates.get("customer_id"))

    before = serialize_user(consumer)
    for key, value in updates.items():
        setattr(consumer, key, value)
    consumer.updated_at = datetime.utcnow()
    db.flush()

    after = serialize_user(consumer)
    log_action(
        db,
        action="UPDATE",
        entity_type="consumer",
        entity_id=consumer.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"before": before, "after": after},
    )
    db.commit()
    return after


@router.delete("/{consumer_id}")
def delete_consumer(
    consumer_id: int,
    request: Request,
    user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    result = delete_entity(
        db,
        kind="consumer",
        entity_id=consumer_id,
        actor=user,
        ip_address=client_ip(request),
    )
    if result.root_deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Consumer not found")
    return {"message": "Consumer deleted successfully", **result.as_dict()}


@router.put("/{consumer_id}/password")
def update_consumer_password(
    consumer_id: int,
    payload: PasswordChange,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    consumer = _get_consumer_or_404(db, consumer_id)
    return change_password(db, target=consumer, actor=user, payload=payload, request=request)
