from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from portal.models.notification import Notification

NOTIFICATION_LIST_LIMIT = 50


def _visible_to(user_id: int):
    return or_(Notification.user_id == user_id, Notification.user_id.is_(None))


def list_for_user(db: Session, user_id: int, limit: int = NOTIFICATION_LIST_LIMIT) -> Dict[str, Any]:
    rows: List[Notification] = (
        db.query(Notification)
        .filter(_visible_to(user_id))
        .order_by(Notification.timestamp.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
    unread = (
        db.query(Notification)
        .filter(_visible_to(user_id), Notification.read.is_(False))
        .count()
    )
    return {"notifications": [serialize_notification(row) for row in rows], "unread_count": unread}


def create_notification(
    db: Session,
    *,
    user_id: Optional[int],
    type: str,
    title: str,
    message: str,
    action_url: Optional[str] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        action_url=action_url,
        read=False,
        timestamp=datetime.utcnow(),
    )
    db.add(notification)
    return notification


def mark_read(db: Session, notification_id: int, user_id: int) -> Optional[Notification]:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, _visible_to(user_id))
        .first()
    )
    if notification is None:
        return None
    notification.read = True
    notification.read_at = datetime.utcnow()
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    return (
        db.query(Notification)
        .filter(_visible_to(user_id), Notification.read.is_(False))
        .update({Notification.read: True, Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    )


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "action_url": notification.action_url,
        "read": notification.read,
        "read_at": notification.read_at,
        "timestamp": notification.timestamp,
    }
