from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user, require_role
from portal.models.customer import Customer
from portal.models.ticket import Ticket
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.authorization_service import MANAGER_ROLES, STAFF_ROLES, AuthorizationService
from portal.services.cascade import delete_entity
from portal.services.comments import add_comment, list_comments, remove_comment, serialize_comment
from portal.services.email_service import TicketChangeNotice
from portal.services.pagination import DEFAULT_PAGE_SIZE, in_department, paginate, paginate_items
from portal.services.settings_service import load_settings
from portal.services.ticket_changes import dispatch_ticket_notice, summarize_ticket_changes

router = APIRouter(prefix="/api/v1/tickets", tags=["tickets"])
logger = logging.getLogger(__name__)

TicketStatus = Literal["OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED", "CANCELLED"]
TicketPriority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
TicketType = Literal["BUG", "FEATURE", "SUPPORT", "TASK"]
Department = Literal["IT", "DATENSCHUTZ"]


class TicketCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TicketStatus = "OPEN"
    priority: TicketPriority = "MEDIUM"
    type: TicketType = "SUPPORT"
    assignee_id: Optional[int] = None
    customer_id: Optional[int] = None
    project_id: Optional[int] = None
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    departments: List[Department] = Field(default_factory=list)


class TicketUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    type: Optional[TicketType] = None
    assignee_id: Optional[int] = None
    customer_id: Optional[int] = None
    project_id: Optional[int] = None
    due_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    departments: Optional[List[Department]] = None

    @field_validator("title", "status", "priority", "type", "tags", "departments")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


def serialize_ticket(ticket: Ticket) -> Dict[str, Any]:
    return {
        "id": ticket.id,
        "title": ticket.title,
        "description": ticket.description,
        "status": ticket.status,
        "priority": ticket.priority,
        "type": ticket.type,
        "assignee_id": ticket.assignee_id,
        "reporter_id": ticket.reporter_id,
        "customer_id": ticket.customer_id,
        "project_id": ticket.project_id,
        "due_date": ticket.due_date,
        "tags": ticket.tags or [],
        "departments": ticket.departments or [],
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
    }


def _get_ticket_or_404(db: Session, ticket_id: int) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return ticket


def _build_notice(db: Session, ticket: Ticket, changed_by: User) -> TicketChangeNotice:
    assignee = db.query(User).filter(User.id == ticket.assignee_id).first() if ticket.assignee_id else None
    customer = db.query(Customer).filter(Customer.id == ticket.customer_id).first() if ticket.customer_id else None
    customer_user = None
    if customer is not None:
        customer_user = (
            db.query(User)
            .filter(User.customer_id == customer.id, User.user_type == "CONSUMER", User.status == "ACTIVE")
            .order_by(User.id.asc())
            .first()
        )
    return TicketChangeNotice(
        ticket_title=ticket.title,
        ticket_description=ticket.description,
        ticket_status=ticket.status,
        ticket_priority=ticket.priority,
        changed_by=changed_by.name or changed_by.email,
        assignee_name=assignee.name if assignee else None,
        assignee_email=assignee.email if assignee else None,
        customer_name=customer.legal_name if customer else None,
        customer_email=customer_user.email if customer_user else None,
    )


@router.get("")
def list_tickets(
    request: Request,
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    type: Optional[str] = None,
    assignee_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    project_id: Optional[int] = None,
    department: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if AuthorizationService.is_consumer(user):
        AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=user.customer_id)
        customer_id = user.customer_id

    query = db.query(Ticket)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Ticket.title.ilike(pattern), Ticket.description.ilike(pattern)))
    if status_filter and status_filter != "all":
        query = query.filter(Ticket.status == status_filter)
    if priority and priority != "all":
        query = query.filter(Ticket.priority == priority)
    if type and type != "all":
        query = query.filter(Ticket.type == type)
    if assignee_id is not None:
        query = query.filter(Ticket.assignee_id == assignee_id)
    if customer_id is not None:
        query = query.filter(Ticket.customer_id == customer_id)
    if project_id is not None:
        query = query.filter(Ticket.project_id == project_id)

    rows = query.order_by(Ticket.created_at.desc(), Ticket.id.desc())
    if department and department != "all":
        matching = [row for row in rows.all() if in_department(row, department)]
        page_rows, pagination = paginate_items(matching, page, limit)
    else:
        page_rows, pagination = paginate(rows, page, limit)

    return {"data": [serialize_ticket(row) for row in page_rows], "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: TicketCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    values = payload.model_dump()
    if AuthorizationService.is_consumer(user):
        # customers open tickets for themselves only and cannot route them
        values["customer_id"] = user.customer_id
        values["assignee_id"] = None
        AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=user.customer_id)

    if values.get("customer_id") is not None and (
        db.query(Customer.id).filter(Customer.id == values["customer_id"]).first() is None
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Customer does not exist")

    now = datetime.utcnow()
    ticket = Ticket(**values, reporter_id=user.id, created_at=now, updated_at=now)
    db.add(ticket)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="ticket",
        entity_id=ticket.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"after": values},
    )
    db.commit()
    db.refresh(ticket)
    return serialize_ticket(ticket)


@router.get("/{ticket_id}")
def get_ticket(
    ticket_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ticket = _get_ticket_or_404(db, ticket_id)
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=ticket.customer_id)
    return serialize_ticket(ticket)


@router.put("/{ticket_id}")
def update_ticket(
    ticket_id: int,
    payload: TicketUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    ticket = _get_ticket_or_404(db, ticket_id)
    updates = payload.model_dump(exclude_unset=True)
    if updates.get("assignee_id") is not None and (
        db.query(User.id).filter(User.id == updates["assignee_id"]).first() is None
    ):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee does not exist")

    before = serialize_ticket(ticket)
    for key, value in updates.items():
        setattr(ticket, key, value)
    ticket.updated_at = datetime.utcnow()
    db.flush()

    after = serialize_ticket(ticket)
    log_action(
        db,
        action="UPDATE",
        entity_type="ticket",
        entity_id=ticket.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"before": before, "after": after},
    )
    db.commit()

    assignee_ids = {value for value in (before["assignee_id"], after["assignee_id"]) if value is not None}
    names = {}
    if assignee_ids:
        names = {row.id: row.name for row in db.query(User).filter(User.id.in_(assignee_ids)).all()}
    summary = summarize_ticket_changes(before, after, names)
    if summary:
        notice = _build_notice(db, ticket, user)
        email_settings = load_settings(db)["email_settings"]
        background_tasks.add_task(dispatch_ticket_notice, email_settings, notice, summary)
        logger.info("Ticket notice queued ticket_id=%s changes=%s", ticket.id, summary)

    return after


@router.delete("/{ticket_id}")
def delete_ticket(
    ticket_id: int,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    result = delete_entity(
        db,
        kind="ticket",
        entity_id=ticket_id,
        actor=user,
        ip_address=client_ip(request),
    )
    if result.root_deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return {"message": "Ticket deleted successfully", **result.as_dict()}


@router.get("/{ticket_id}/comments")
def get_ticket_comments(
    ticket_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ticket = _get_ticket_or_404(db, ticket_id)
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=ticket.customer_id)
    return list_comments(db, "ticket", ticket_id)


@router.post("/{ticket_id}/comments", status_code=status.HTTP_201_CREATED)
def create_ticket_comment(
    ticket_id: int,
    payload: CommentCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ticket = _get_ticket_or_404(db, ticket_id)
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=ticket.customer_id)
    comment = add_comment(db, owner="ticket", owner_id=ticket_id, author=user, content=payload.content)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="comment",
        entity_id=comment.id,
        actor=user,
        ip_address=client_ip(request),
        details={"ticket_id": ticket_id},
    )
    db.commit()
    db.refresh(comment)
    return serialize_comment(comment, user)


@router.delete("/{ticket_id}/comments/{comment_id}")
def delete_ticket_comment(
    ticket_id: int,
    comment_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = remove_comment(
        db,
        owner="ticket",
        owner_id=ticket_id,
        comment_id=comment_id,
        user=user,
        request=request,
        ip_address=client_ip(request),
    )
    return {"message": "Comment deleted successfully", **result.as_dict()}
