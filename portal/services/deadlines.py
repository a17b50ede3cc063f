from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from portal.models.customer import Customer
from portal.models.project import Project
from portal.models.task import CLOSED_TASK_STATUSES, Task
from portal.models.user import User
from portal.services.email_service import EmailService, TaskDeadlineNotice

logger = logging.getLogger(__name__)
DEADLINE_PREFIX = "[DEADLINES]"

NOTIFY_DAYS = (3, 1, 0)
SECONDS_PER_DAY = 24 * 60 * 60


def days_until_due(due_date: datetime, now: datetime) -> int:
    return math.ceil((due_date - now).total_seconds() / SECONDS_PER_DAY)


def _customer_name(customer: Optional[Customer]) -> Optional[str]:
    if customer is None:
        return None
    return customer.legal_name or customer.trade_name or "Unbekannter Kunde"


def run_deadline_sweep(
    db: Session, email_service: EmailService, now: Optional[datetime] = None
) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    tasks = (
        db.query(Task)
        .filter(
            Task.due_date.isnot(None),
            Task.assignee_id.isnot(None),
            Task.status.notin_(CLOSED_TASK_STATUSES),
        )
        .order_by(Task.due_date.asc())
        .all()
    )

    sent: List[Dict[str, Any]] = []
    for task in tasks:
        remaining = days_until_due(task.due_date, now)
        if remaining not in NOTIFY_DAYS:
            continue

        assignee = db.query(User).filter(User.id == task.assignee_id).first()
        if assignee is None or not assignee.email:
            continue

        project = db.query(Project).filter(Project.id == task.project_id).first() if task.project_id else None
        customer = db.query(Customer).filter(Customer.id == task.customer_id).first() if task.customer_id else None

        notice = TaskDeadlineNotice(
            task_title=task.title,
            task_description=task.description,
            due_date=task.due_date,
            assignee_name=assignee.name,
            assignee_email=assignee.email,
            project_name=project.name if project else None,
            customer_name=_customer_name(customer),
            days_until_due=remaining,
        )
        try:
            delivered = email_service.send_deadline_notice(notice)
        except Exception:
            logger.exception("%s notice failed task_id=%s", DEADLINE_PREFIX, task.id)
            continue

        if delivered:
            sent.append(
                {
                    "task_id": task.id,
                    "task_title": task.title,
                    "assignee_email": assignee.email,
                    "days_until_due": remaining,
                }
            )

    logger.info("%s sweep finished candidates=%s sent=%s", DEADLINE_PREFIX, len(tasks), len(sent))
    return {
        "success": True,
        "notifications_sent": len(sent),
        "details": sent,
        "message": f"Sent {len(sent)} task deadline notifications",
    }
