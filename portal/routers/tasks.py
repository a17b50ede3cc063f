from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, get_current_user, require_role
from portal.models.project import Project
from portal.models.task import Task
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.authorization_service import MANAGER_ROLES, STAFF_ROLES, AuthorizationService
from portal.services.cascade import delete_entity
from portal.services.comments import add_comment, list_comments, remove_comment, serialize_comment
from portal.services.pagination import DEFAULT_PAGE_SIZE, in_department, paginate, paginate_items

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])

TaskStatus = Literal["TODO", "IN_PROGRESS", "DONE", "COMPLETED", "CANCELLED"]
TaskPriority = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
Department = Literal["IT", "DATENSCHUTZ"]

# copied from the parent task onto its subtasks
INHERITED_FIELDS = ("project_id", "customer_id")


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TaskStatus = "TODO"
    priority: TaskPriority = "MEDIUM"
    type: Optional[str] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = None
    project_id: Optional[int] = None
    customer_id: Optional[int] = None
    departments: List[Department] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    type: Optional[str] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = None
    project_id: Optional[int] = None
    customer_id: Optional[int] = None
    departments: Optional[List[Department]] = None

    @field_validator("title", "status", "priority", "departments")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class SubtaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TaskStatus = "TODO"
    priority: TaskPriority = "MEDIUM"
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = None


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


def serialize_task(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "type": task.type,
        "due_date": task.due_date,
        "assignee_id": task.assignee_id,
        "reporter_id": task.reporter_id,
        "project_id": task.project_id,
        "customer_id": task.customer_id,
        "parent_task_id": task.parent_task_id,
        "departments": task.departments or [],
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


def _get_task_or_404(db: Session, task_id: int, detail: str = "Task not found") -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return task


def _ensure_references(db: Session, values: Dict[str, Any]) -> None:
    assignee_id = values.get("assignee_id")
    if assignee_id is not None and db.query(User.id).filter(User.id == assignee_id).first() is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assignee does not exist")
    project_id = values.get("project_id")
    if project_id is not None and db.query(Project.id).filter(Project.id == project_id).first() is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project does not exist")


def _reject_inherited_fields(updates: Dict[str, Any]) -> None:
    if any(key in updates for key in INHERITED_FIELDS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subtasks inherit project and customer from their parent task",
        )


def _apply_update(db: Session, task: Task, updates: Dict[str, Any], user: User, request: Request, entity_type: str):
    before = serialize_task(task)
    for key, value in updates.items():
        setattr(task, key, value)
    task.updated_at = datetime.utcnow()

    inherited = {key: updates[key] for key in INHERITED_FIELDS if key in updates}
    if inherited and task.parent_task_id is None:
        db.query(Task).filter(Task.parent_task_id == task.id).update(inherited, synchronize_session=False)
    db.flush()

    after = serialize_task(task)
    log_action(
        db,
        action="UPDATE",
        entity_type=entity_type,
        entity_id=task.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"before": before, "after": after},
    )
    db.commit()
    return after


@router.get("")
def list_tasks(
    request: Request,
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    type: Optional[str] = None,
    assignee_id: Optional[int] = None,
    project_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    department: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if AuthorizationService.is_consumer(user):
        AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=user.customer_id)
        customer_id = user.customer_id

    query = db.query(Task).filter(Task.parent_task_id.is_(None))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))
    if status_filter and status_filter != "all":
        query = query.filter(Task.status == status_filter)
    if priority and priority != "all":
        query = query.filter(Task.priority == priority)
    if type and type != "all":
        query = query.filter(Task.type == type)
    if assignee_id is not None:
        query = query.filter(Task.assignee_id == assignee_id)
    if project_id is not None:
        query = query.filter(Task.project_id == project_id)
    if customer_id is not None:
        query = query.filter(Task.customer_id == customer_id)

    rows = query.order_by(Task.created_at.desc(), Task.id.desc())
    if department and department != "all":
        matching = [row for row in rows.all() if in_department(row, department)]
        page_rows, pagination = paginate_items(matching, page, limit)
    else:
        page_rows, pagination = paginate(rows, page, limit)

    return {"data": [serialize_task(row) for row in page_rows], "pagination": pagination}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    request: Request,
    user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    values = payload.model_dump()
    _ensure_references(db, values)
    if values.get("project_id") is not None and values.get("customer_id") is None:
        project = db.query(Project).filter(Project.id == values["project_id"]).first()
        values["customer_id"] = project.customer_id

    now = datetime.utcnow()
    task = Task(**values, reporter_id=user.id, created_at=now, updated_at=now)
    db.add(task)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="task",
        entity_id=task.id,
        actor=user,
        ip_address=client_ip(request),
        changes={"after": values},
    )
    db.commit()
    db.refresh(task)
    return serialize_task(task)


@router.get("/subtasks/{subtask_id}")
def get_subtask(
    subtask_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    subtask = _get_task_or_404(db, subtask_id, "Subtask not found")
    if subtask.parent_task_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This is not a subtask")
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=subtask.customer_id)
    return serialize_task(subtask)


@router.put("/subtasks/{subtask_id}")
def update_subtask(
    subtask_id: int,
    payload: TaskUpdate,
    request: Request,
    user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    subtask = _get_task_or_404(db, subtask_id, "Subtask not found")
    if subtask.parent_task_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="This is not a subtask")
    updates = payload.model_dump(exclude_unset=True)
    _reject_inherited_fields(updates)
    _ensure_references(db, updates)
    return _apply_update(db, subtask, updates, user, request, "subtask")


@router.delete("/subtasks/{subtask_id}")
def delete_subtask(
    subtask_id: int,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    result = delete_entity(
        db,
        kind="subtask",
        entity_id=subtask_id,
        actor=user,
        ip_address=client_ip(request),
    )
    return {"message": "Subtask deleted successfully", **result.as_dict()}


@router.get("/{task_id}")
def get_task(
    task_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    task = _get_task_or_404(db, task_id)
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=task.customer_id)

    result = serialize_task(task)
    subtasks = db.query(Task).filter(Task.parent_task_id == task_id).order_by(Task.id.asc()).all()
    result["subtasks"] = [serialize_task(row) for row in subtasks]
    return result


@router.put("/{task_id}")
def update_task(
    task_id: int,
    payload: TaskUpdate,
    request: Request,
    user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    task = _get_task_or_404(db, task_id)
    updates = payload.model_dump(exclude_unset=True)
    entity_type = "task"
    if task.parent_task_id is not None:
        _reject_inherited_fields(updates)
        entity_type = "subtask"
    _ensure_references(db, updates)
    return _apply_update(db, task, updates, user, request, entity_type)


@router.delete("/{task_id}")
def delete_task(
    task_id: int,
    request: Request,
    user: User = Depends(require_role(MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    task = _get_task_or_404(db, task_id)
    kind = "subtask" if task.parent_task_id is not None else "task"
    result = delete_entity(
        db,
        kind=kind,
        entity_id=task_id,
        actor=user,
        ip_address=client_ip(request),
    )
    if result.root_deleted_count == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    message = "Subtask deleted successfully" if kind == "subtask" else "Task deleted successfully"
    return {"message": message, **result.as_dict()}


@router.get("/{task_id}/subtasks")
def list_subtasks(
    task_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    task = _get_task_or_404(db, task_id)
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=task.customer_id)
    rows = db.query(Task).filter(Task.parent_task_id == task_id).order_by(Task.id.asc()).all()
    return [serialize_task(row) for row in rows]


@router.post("/{task_id}/subtasks", status_code=status.HTTP_201_CREATED)
def create_subtask(
    task_id: int,
    payload: SubtaskCreate,
    request: Request,
    user: User = Depends(require_role(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    parent = _get_task_or_404(db, task_id)
    if parent.parent_task_id is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subtasks cannot have subtasks")
    values = payload.model_dump()
    _ensure_references(db, values)

    now = datetime.utcnow()
    subtask = Task(
        **values,
        parent_task_id=parent.id,
        project_id=parent.project_id,
        customer_id=parent.customer_id,
        departments=list(parent.departments or []),
        reporter_id=user.id,
        created_at=now,
        updated_at=now,
    )
    db.add(subtask)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="subtask",
        entity_id=subtask.id,
        actor=user,
        ip_address=client_ip(request),
        details={"parent_task_id": parent.id},
    )
    db.commit()
    db.refresh(subtask)
    return serialize_task(subtask)


@router.get("/{task_id}/comments")
def get_task_comments(
    task_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    task = _get_task_or_404(db, task_id)
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=task.customer_id)
    return list_comments(db, "task", task_id)


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED)
def create_task_comment(
    task_id: int,
    payload: CommentCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    task = _get_task_or_404(db, task_id)
    AuthorizationService.ensure_customer_access(request=request, user=user, customer_id=task.customer_id)
    comment = add_comment(db, owner="task", owner_id=task_id, author=user, content=payload.content)
    db.flush()
    log_action(
        db,
        action="CREATE",
        entity_type="comment",
        entity_id=comment.id,
        actor=user,
        ip_address=client_ip(request),
        details={"task_id": task_id},
    )
    db.commit()
    db.refresh(comment)
    return serialize_comment(comment, user)


@router.delete("/{task_id}/comments/{comment_id}")
def delete_task_comment(
    task_id: int,
    comment_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = remove_comment(
        db,
        owner="task",
        owner_id=task_id,
        comment_id=comment_id,
        user=user,
        request=request,
        ip_address=client_ip(request),
    )
    return {"message": "Comment deleted successfully", **result.as_dict()}
