from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user, require_role
from portal.models.customer import Customer
from portal.models.project import Project
from portal.models.task import Task
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.authorization_service import MANAGER_ROLES, AuthorizationService
from portal.services.cascade import delete_entity
from portal.services.pagination import DEFAULT_PAGE_SIZE, in_department, paginate, paginate_items

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])

ProjectStatus = Literal["PLANNING", "ACTIVE", "ON_HOLD", "COMPLETED", "CANCELLED"]
Department = Literal["IT", "DATENSCHUTZ"]


class ProjectCreate(BaseModel):
    customer_id: int = Field(..., ge=1)
    code: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: ProjectStatus = "PLANNING"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    assignee_id: Optional[int] = None
    budget: Optional[float] = Field(None, ge=0)
    tags: List[str] = Field(default_factory=list)
    departments: List[Department] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    customer_id: Optional[int] = Field(None, ge=1)
    code: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    assignee_id: Optional[int] = None
    budget: Optional[float] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    departments: Optional[List[Department]] = None

    @field_validator("customer_id", "name", "status", "tags", "departments")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


def serialize_project(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "customer_id": project.customer_id,
        "code": project.code,
        "name": project.name,
        "description": project.description,
        "status": project.status,
        "start_date": project.start_date,
        "end_date": project.end_date,
        "assignee_id": project.assignee_id,
        "budget": project.budget,
        "tags": project.tags or [],
        "departments": project.departments or [],
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


def _ensure_references(db: Session, customer_id: Optional[int], assignee_id: Optional[int]) -> None:
    if customer_id is not None and db.query(Customer.id).filter(Customer.id == customer_id).first() is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Customer does not exist")
    if assignee_id is not None and db.query(User.id).filter(User.id == assignee_id).first() is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee does not exist")


@router.get("")
def list_projects(
    request: Request,
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[int] = None,
    assignee_id: Optional[int] = None,
    department: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if AuthorizationService.is_consumer(user):
        AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=user.customer_id)
        customer_id = user.customer_id

    query = db.query(Project)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Project.name.ilike(pattern), Project.code.ilike(pattern)))
    if status_filter and status_filter != "all":
        query = query.filter(Project.status == status_filter)
    if customer_id is not None:
        query = query.filter(Project.customer_id == customer_id)
    if assignee_id is not None:
        query = query.filter(Project.assignee_id == assignee_id)

    rows = query.order_by(Project.created_at.desc(), Project.id.desc())
    if department and department != "all":
        # departments is a JSON list, matched after loading
        matching = [row for row in rows.all() if in_department(row, department)]
        page_rows, pagination = paginate_items(matching, page, limit)
    else:
        page_rows, pagination = paginate(rows, page, limit)

    return {"data": [serialize_project(row) for row in page_rows], "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    _ensure_references(db, payload.customer_id, payload.assignee_id)
    now = datetime.utcnow()
    project = Project(**payload.model_dump(), created_at=now, updated_at=now)
    db.add(project)
    db.flush()

    log_action(
        db,
        action="CREATE",
        entity_type="project",
        entity_id=project.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"after": payload.model_dump()},
    )
    db.commit()
    db.refresh(project)
    return serialize_project(project)


@router.get("/{project_id}")
def get_project(
    project_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    project = db.query(Project).filter(Project.id == project_id).first()
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=project.customer_id)

    result = serialize_project(project)
    result["task_count"] = (
        db.query(Task).filter(Task.project_id == project_id, Task.parent_task_id.is_(None)).count()
    )
    return result


@router.put("/{project_id}")
def update_project(
    project_id: int,
    payload: ProjectUpdate,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    project = db.query(Project).filter(Project.id == project_id).first()
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    updates = payload.model_dump(exclude_unset=True)
    _ensure_references(db, updates.get("customer_id"), updates.get("assignee_id"))
    before = serialize_project(project)
    for key, value in updates.items():
        setattr(project, key, value)
    project.updated_at = datetime.utcnow()
    db.flush()

    after = serialize_project(project)
    log_action(
        db,
        action="UPDATE",
        entity_type="project",
        entity_id=project.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"before": before, "after": after},
    )
    db.commit()
    return after


@router.delete("/{project_id}")
def delete_project(
    project_id: int,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    result = delete_entity(
        db,
        kind="project",
        entity_id=project_id,
        actor=user,
        ip_address=client_ip(request),
    )
    if result.root_deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return {"message": "Project deleted successfully", **result.as_dict()}
