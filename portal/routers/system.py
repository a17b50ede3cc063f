from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.config import ENV_NORMALIZED
from portal.core.database import get_db
from portal.core.metrics import request_metrics
from portal.deps import require_role
from portal.models.audit_log import AuditLog
from portal.models.customer import Customer
from portal.models.project import Project
from portal.models.task import Task
from portal.models.ticket import Ticket
from portal.models.user import User

router = APIRouter(prefix="/api/v1/system", tags=["system"])
logger = logging.getLogger(__name__)

COUNTED_MODELS = {
    "customers": Customer,
    "projects": Project,
    "tasks": Task,
    "tickets": Ticket,
    "users": User,
    "audit_logs": AuditLog,
}


@router.get("/status")
def system_status(
    _user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    database = {"status": "ok", "dialect": db.get_bind().dialect.name}
    counts = {}
    try:
        db.execute(text("SELECT 1"))
        counts = {name: db.query(model).count() for name, model in COUNTED_MODELS.items()}
    except SQLAlchemyError as exc:
        logger.error("Database status check failed error=%s", exc)
        db.rollback()
        database["status"] = "error"
        database["error"] = str(exc.__class__.__name__)

    return {
        "environment": ENV_NORMALIZED,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": database,
        "counts": counts,
        "requests": request_metrics.snapshot(),
        "cascades": request_metrics.snapshot_cascades(),
    }
