from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user, require_role
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.authorization_service import STAFF_ROLES
from portal.services.notifications import (
    create_notification,
    list_for_user,
    mark_all_read,
    mark_read,
    serialize_notification,
)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])

NotificationType = Literal["INFO", "SUCCESS", "WARNING", "ERROR", "TASK", "TICKET", "SYSTEM"]


class NotificationCreate(BaseModel):
    user_id: Optional[int] = None
    type: NotificationType = "INFO"
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    action_url: Optional[str] = None


@router.get("")
def get_notifications(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_for_user(db, user.id)


@router.post("", status_code=status.HTTP_201_CREATED)
def post_notification(
    payload: NotificationCreate,
    request: Request,
    user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    notification = create_notification(
        db,
        user_id=payload.user_id,
        type=payload.type,
        title=payload.title,
        message=payload.message,
        action_url=payload.action_url,
    )
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="notification",
        entity_id=notification.id,
        actor=user,
        ip_address=client_ip(request),
        details={"target_user_id": payload.user_id, "title": payload.title},
    )
    db.commit()
    db.refresh(notification)
    return serialize_notification(notification)


@router.put("/read-all")
def read_all(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = mark_all_read(db, user.id)
    db.commit()
    return {"message": "All notifications marked as read", "updated": updated}


@router.put("/{notification_id}/read")
def read_one(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = mark_read(db, notification_id, user.id)
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    db.commit()
    db.refresh(notification)
    return serialize_notification(notification)
