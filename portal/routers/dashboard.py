from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import require_role
from portal.models.customer import Customer
from portal.models.project import Project
from portal.models.task import CLOSED_TASK_STATUSES, Task
from portal.models.ticket import Ticket
from portal.models.user import User
from portal.services.authorization_service import CONSUMER_ROLE, STAFF_ROLES, AuthorizationService

router = APIRouter(prefix="/api/v1", tags=["dashboard"])

OPEN_TICKET_STATUSES = ("OPEN", "IN_PROGRESS")


def _task_counts(query, now: datetime) -> Dict[str, int]:
    open_query = query.filter(Task.status.notin_(CLOSED_TASK_STATUSES))
    return {
        "total": query.count(),
        "open": open_query.count(),
        "overdue": open_query.filter(Task.due_date.isnot(None), Task.due_date < now).count(),
        "due_this_week": open_query.filter(
            Task.due_date.isnot(None), Task.due_date >= now, Task.due_date <= now + timedelta(days=7)
        ).count(),
    }


@router.get("/dashboard")
def staff_dashboard(
    user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    now = datetime.utcnow()
    tasks = db.query(Task).filter(Task.parent_task_id.is_(None))
    return {
        "customers": {
            "total": db.query(Customer).count(),
            "active": db.query(Customer).filter(Customer.status == "ACTIVE").count(),
        },
        "projects": {
            "total": db.query(Project).count(),
            "active": db.query(Project).filter(Project.status == "ACTIVE").count(),
        },
        "tasks": _task_counts(tasks, now),
        "my_tasks": _task_counts(tasks.filter(Task.assignee_id == user.id), now),
        "tickets": {
            "total": db.query(Ticket).count(),
            "open": db.query(Ticket).filter(Ticket.status.in_(OPEN_TICKET_STATUSES)).count(),
            "urgent": db.query(Ticket)
            .filter(Ticket.status.in_(OPEN_TICKET_STATUSES), Ticket.priority == "URGENT")
            .count(),
        },
    }


@router.get("/customer-dashboard")
def customer_dashboard(
    request: Request,
    user: User = Depends(require_role([CONSUMER_ROLE])),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=user.customer_id)
    customer_id = user.customer_id
    now = datetime.utcnow()

    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    tickets = db.query(Ticket).filter(Ticket.customer_id == customer_id)
    return {
        "customer": {
            "id": customer_id,
            "legal_name": customer.legal_name if customer else None,
        },
        "projects": {
            "total": db.query(Project).filter(Project.customer_id == customer_id).count(),
            "active": db.query(Project)
            .filter(Project.customer_id == customer_id, Project.status == "ACTIVE")
            .count(),
        },
        "tasks": _task_counts(
            db.query(Task).filter(Task.customer_id == customer_id, Task.parent_task_id.is_(None)), now
        ),
        "tickets": {
            "total": tickets.count(),
            "open": tickets.filter(Ticket.status.in_(OPEN_TICKET_STATUSES)).count(),
            "resolved": tickets.filter(Ticket.status.in_(("RESOLVED", "CLOSED"))).count(),
        },
    }
