from __future__ import annotations

import csv
import io
import json
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import require_role
from portal.models.user import User
from portal.services.audit import filtered_audit_query, serialize_audit_entry
from portal.services.authorization_service import MANAGER_ROLES
from portal.services.pagination import DEFAULT_PAGE_SIZE, paginate

router = APIRouter(prefix="/api/v1/audit-logs", tags=["audit-logs"])

EXPORT_COLUMNS = ["Timestamp", "User Email", "Action", "Entity Type", "Entity ID", "IP Address", "Details"]


@router.get("")
def list_audit_logs(
    search: Optional[str] = None,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    action: Optional[str] = None,
    date_range: Optional[str] = Query(None, alias="dateRange"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    _user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    query = filtered_audit_query(
        db,
        search=search,
        entity_type=entity_type,
        action=action,
        date_range=date_range,
    )
    rows, pagination = paginate(query, page, limit)
    return {"data": [serialize_audit_entry(row) for row in rows], "pagination": pagination}


@router.get("/export")
def export_audit_logs(
    search: Optional[str] = None,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    action: Optional[str] = None,
    date_range: Optional[str] = Query(None, alias="dateRange"),
    _user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    rows = filtered_audit_query(
        db,
        search=search,
        entity_type=entity_type,
        action=action,
        date_range=date_range,
    ).all()

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for row in rows:
        writer.writerow(
            [
                row.timestamp.isoformat() if row.timestamp else "",
                row.user_email or "",
                row.action,
                row.entity_type,
                row.entity_id or "",
                row.ip_address or "",
                json.dumps(row.details, ensure_ascii=False) if row.details else "",
            ]
        )

    output.seek(0)
    filename = f"audit-logs-{datetime.utcnow().strftime('%Y-%m-%d')}.csv"
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    return StreamingResponse(iter([output.getvalue()]), media_type="text/csv", headers=headers)
