from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Query, Session

from portal.models.audit_log import AuditLog


def log_action(
    db: Session,
    *,
    action: str,
    entity_type: str,
    entity_id: Any = None,
    actor: Any = None,
    ip_address: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    changes: Optional[Mapping[str, Any]] = None,
) -> AuditLog:
    """Stage one audit entry on ``db``; the caller decides when to commit."""
    actor_id = getattr(actor, "id", None)
    entry = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        user_id=str(actor_id) if actor_id is not None else None,
        user_email=getattr(actor, "email", None),
        details=jsonable_encoder(dict(details)) if details else None,
        changes=jsonable_encoder(dict(changes)) if changes else None,
        ip_address=ip_address or "unknown",
        timestamp=datetime.utcnow(),
    )
    db.add(entry)
    return entry


def date_range_start(date_range: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    now = now or datetime.utcnow()
    if date_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == "week":
        return now - timedelta(days=7)
    if date_range == "month":
        return now - timedelta(days=30)
    if date_range == "year":
        return now - timedelta(days=365)
    return None


def filtered_audit_query(
    db: Session,
    *,
    search: Optional[str] = None,
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    date_range: Optional[str] = None,
) -> Query:
    query = db.query(AuditLog)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                AuditLog.user_email.ilike(pattern),
                AuditLog.action.ilike(pattern),
                AuditLog.entity_type.ilike(pattern),
                AuditLog.entity_id.ilike(pattern),
                cast(AuditLog.details, String).ilike(pattern),
            )
        )
    if entity_type and entity_type != "all":
        query = query.filter(AuditLog.entity_type == entity_type)
    if action and action != "all":
        query = query.filter(AuditLog.action == action)

    start = date_range_start(date_range)
    if start is not None:
        query = query.filter(AuditLog.timestamp >= start)

    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


def serialize_audit_entry(entry: AuditLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "user_id": entry.user_id,
        "user_email": entry.user_email,
        "details": entry.details,
        "changes": entry.changes,
        "timestamp": entry.timestamp,
        "ip_address": entry.ip_address,
    }
