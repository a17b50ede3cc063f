"""Cascading deletion of aggregate roots with a single up-front audit entry.

Each root kind declares the relations that hang off it. A relation either
deletes its rows (``DELETE``) or clears the foreign key and keeps the row
(``DETACH``). Deleted rows may themselves be roots of a nested kind, in which
case their own relations are processed before they are removed.

The sequence for one call is fixed: load root, write audit, run relations,
delete root. Relations run as independent units; completed units are not
rolled back when a later one fails.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, sessionmaker

from portal.core.config import CASCADE_MAX_WORKERS
from portal.core.errors import CascadeError, EntityNotFoundError, InvalidDeletionTarget
from portal.core.metrics import request_metrics
from portal.models.comment import Comment
from portal.models.customer import Customer
from portal.models.customer_address import Address
from portal.models.customer_contact import Contact
from portal.models.project import Project
from portal.models.quote import Quote
from portal.models.task import Task
from portal.models.ticket import Ticket
from portal.models.user import User
from portal.services.audit import log_action

logger = logging.getLogger(__name__)
CASCADE_PREFIX = "[CASCADE]"

DELETE = "delete"
DETACH = "detach"

GDPR_REASON = "GDPR compliant deletion"
OWN_COMMENT_REASON = "User deleted own comment"
MODERATED_COMMENT_REASON = "Manager/Admin deleted comment"

COMMENT_PREVIEW_LENGTH = 100


@dataclass(frozen=True)
class Relation:
    name: str
    model: Any
    column: str
    mode: str = DELETE
    nested: Optional[str] = None
    # extra criterion built from the parent ids; keeps sibling units disjoint
    scope: Optional[Callable[[List[int]], Any]] = None


@dataclass(frozen=True)
class RootKind:
    model: Any
    action: str
    snapshot: Callable[[Any], Dict[str, Any]]
    accepts: Callable[[Any], bool] = lambda row: True


@dataclass
class CascadeResult:
    root_deleted_count: int
    per_relation_counts: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "root_deleted_count": self.root_deleted_count,
            "per_relation_counts": dict(self.per_relation_counts),
        }


def _preview(text: Optional[str]) -> str:
    text = text or ""
    if len(text) <= COMMENT_PREVIEW_LENGTH:
        return text
    return text[:COMMENT_PREVIEW_LENGTH] + "..."


_ASSIGNEE_DETACH = (
    Relation("tasks", Task, "assignee_id", DETACH),
    Relation("projects", Project, "assignee_id", DETACH),
    Relation("tickets", Ticket, "assignee_id", DETACH),
)


def _outside_customer_projects(model: Any) -> Callable[[List[int]], Any]:
    """Rows not reachable through one of the customer's projects."""

    def _criterion(customer_ids: List[int]) -> Any:
        owned_projects = select(Project.id).where(Project.customer_id.in_(customer_ids))
        return or_(model.project_id.is_(None), model.project_id.notin_(owned_projects))

    return _criterion


def _top_level_tasks(_parent_ids: List[int]) -> Any:
    return Task.parent_task_id.is_(None)


def _top_level_tasks_outside_customer_projects(customer_ids: List[int]) -> Any:
    return and_(_top_level_tasks(customer_ids), _outside_customer_projects(Task)(customer_ids))


RELATIONS: Dict[str, Sequence[Relation]] = {
    "customer": (
        Relation("addresses", Address, "customer_id"),
        Relation("contacts", Contact, "customer_id"),
        Relation("projects", Project, "customer_id", nested="project"),
        Relation("quotes", Quote, "customer_id", scope=_outside_customer_projects(Quote)),
        Relation("tickets", Ticket, "customer_id", nested="ticket", scope=_outside_customer_projects(Ticket)),
        Relation("tasks", Task, "customer_id", nested="task", scope=_top_level_tasks_outside_customer_projects),
    ),
    "project": (
        Relation("tasks", Task, "project_id", nested="task", scope=_top_level_tasks),
        Relation("tickets", Ticket, "project_id", nested="ticket"),
        Relation("quotes", Quote, "project_id"),
    ),
    "task": (
        Relation("subtasks", Task, "parent_task_id", nested="subtask"),
        Relation("comments", Comment, "task_id"),
    ),
    "subtask": (Relation("comments", Comment, "task_id"),),
    "ticket": (Relation("comments", Comment, "ticket_id"),),
    "user": _ASSIGNEE_DETACH,
    "consumer": _ASSIGNEE_DETACH,
    "comment": (),
}

ROOTS: Dict[str, RootKind] = {
    "customer": RootKind(
        Customer,
        "DELETE_CUSTOMER",
        lambda row: {"customer_name": row.legal_name, "trade_name": row.trade_name},
    ),
    "project": RootKind(
        Project,
        "DELETE_PROJECT",
        lambda row: {"project_name": row.name, "project_code": row.code, "customer_id": row.customer_id},
    ),
    "task": RootKind(
        Task,
        "DELETE_TASK",
        lambda row: {"task_title": row.title, "project_id": row.project_id},
        accepts=lambda row: row.parent_task_id is None,
    ),
    "subtask": RootKind(
        Task,
        "DELETE_SUBTASK",
        lambda row: {"subtask_title": row.title, "parent_task_id": row.parent_task_id},
    ),
    "ticket": RootKind(
        Ticket,
        "DELETE_TICKET",
        lambda row: {"ticket_title": row.title, "customer_id": row.customer_id},
    ),
    "user": RootKind(
        User,
        "DELETE_USER",
        lambda row: {"user_name": row.name, "user_email": row.email},
        accepts=lambda row: row.user_type == "STAFF",
    ),
    "consumer": RootKind(
        User,
        "DELETE_CONSUMER",
        lambda row: {"user_name": row.name, "user_email": row.email, "customer_id": row.customer_id},
        accepts=lambda row: row.user_type == "CONSUMER",
    ),
    "comment": RootKind(
        Comment,
        "DELETE_COMMENT",
        lambda row: {
            "task_id": row.task_id,
            "ticket_id": row.ticket_id,
            "comment_content": _preview(row.content),
        },
    ),
}


def _run_relation(db: Session, relation: Relation, parent_ids: List[int], path: str) -> Dict[str, int]:
    """Apply one relation to the rows owned by ``parent_ids``; returns counts keyed by path."""
    counts: Dict[str, int] = {}
    column = getattr(relation.model, relation.column)
    criteria = [column.in_(parent_ids)]
    if relation.scope is not None and parent_ids:
        criteria.append(relation.scope(parent_ids))

    if relation.mode == DETACH:
        if not parent_ids:
            counts[path] = 0
            return counts
        counts[path] = (
            db.query(relation.model)
            .filter(*criteria)
            .update({column: None}, synchronize_session=False)
        )
        return counts

    child_ids = (
        [
            row_id
            for (row_id,) in db.query(relation.model.id).filter(*criteria).order_by(relation.model.id).all()
        ]
        if parent_ids
        else []
    )
    if relation.nested:
        for nested in RELATIONS[relation.nested]:
            counts.update(_run_relation(db, nested, child_ids, f"{path}.{nested.name}"))

    if child_ids:
        counts[path] = (
            db.query(relation.model)
            .filter(relation.model.id.in_(child_ids))
            .delete(synchronize_session=False)
        )
    else:
        counts[path] = 0
    return counts


class CascadeExecutor:
    """Runs the top-level relations of one root as independent units.

    With more than one worker on a store that accepts concurrent writers, each
    unit runs on its own thread and session. Otherwise units run one after the
    other on the caller's session. Every unit commits its own work.
    """

    def __init__(self, max_workers: int = CASCADE_MAX_WORKERS, fan_out: Optional[bool] = None) -> None:
        self.max_workers = max(1, int(max_workers))
        self.fan_out = fan_out

    def _should_fan_out(self, db: Session) -> bool:
        if self.fan_out is not None:
            return self.fan_out and self.max_workers > 1
        if self.max_workers <= 1:
            return False
        return db.get_bind().dialect.name != "sqlite"

    def run(self, db: Session, relations: Iterable[Relation], parent_ids: List[int]) -> Dict[str, int]:
        relations = list(relations)
        if not relations:
            return {}
        if self._should_fan_out(db):
            return self._run_concurrent(db, relations, parent_ids)
        return self._run_sequential(db, relations, parent_ids)

    def _run_sequential(self, db: Session, relations: List[Relation], parent_ids: List[int]) -> Dict[str, int]:
        completed: Dict[str, int] = {}
        for relation in relations:
            try:
                counts = _run_relation(db, relation, parent_ids, relation.name)
                db.commit()
            except Exception as exc:
                db.rollback()
                raise CascadeError(relation.name, completed) from exc
            completed.update(counts)
        return completed

    def _run_concurrent(self, db: Session, relations: List[Relation], parent_ids: List[int]) -> Dict[str, int]:
        session_factory = sessionmaker(bind=db.get_bind(), autocommit=False, autoflush=False)

        def _unit(relation: Relation) -> Dict[str, int]:
            session = session_factory()
            try:
                counts = _run_relation(session, relation, parent_ids, relation.name)
                session.commit()
                return counts
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        completed: Dict[str, int] = {}
        failed_relation: Optional[str] = None
        failure: Optional[BaseException] = None
        workers = min(self.max_workers, len(relations))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cascade") as pool:
            futures = {pool.submit(_unit, relation): relation for relation in relations}
            for future in as_completed(futures):
                relation = futures[future]
                try:
                    completed.update(future.result())
                except Exception as exc:
                    logger.warning(
                        "%s unit failed relation=%s error=%s",
                        CASCADE_PREFIX,
                        relation.name,
                        exc,
                    )
                    if failure is None:
                        failed_relation, failure = relation.name, exc

        if failure is not None:
            raise CascadeError(failed_relation or "unknown", completed) from failure
        return completed


def delete_entity(
    db: Session,
    *,
    kind: str,
    entity_id: int,
    actor: Any,
    ip_address: Optional[str] = None,
    reason: Optional[str] = None,
    executor: Optional[CascadeExecutor] = None,
) -> CascadeResult:
    if kind not in ROOTS:
        raise ValueError(f"Unknown entity kind: {kind}")

    root_kind = ROOTS[kind]
    model = root_kind.model
    started = time.perf_counter()

    root = db.query(model).filter(model.id == entity_id).first()
    if root is None or not root_kind.accepts(root):
        raise EntityNotFoundError(kind, entity_id)
    if kind == "subtask" and root.parent_task_id is None:
        raise InvalidDeletionTarget("This is not a subtask")

    details = root_kind.snapshot(root)
    details["reason"] = reason or GDPR_REASON
    details["deleted_at"] = datetime.now(timezone.utc).isoformat()
    log_action(
        db,
        action=root_kind.action,
        entity_type=kind,
        entity_id=entity_id,
        actor=actor,
        ip_address=ip_address,
        details=details,
    )
    db.commit()
    logger.info(
        "%s audit written kind=%s entity_id=%s actor=%s",
        CASCADE_PREFIX,
        kind,
        entity_id,
        getattr(actor, "id", None),
    )

    executor = executor or CascadeExecutor()
    try:
        counts = executor.run(db, RELATIONS[kind], [entity_id])
        try:
            root_deleted = db.query(model).filter(model.id == entity_id).delete(synchronize_session=False)
            db.commit()
        except Exception as exc:
            db.rollback()
            raise CascadeError("root", counts) from exc
    except CascadeError:
        request_metrics.observe_cascade(kind, round((time.perf_counter() - started) * 1000, 2), True)
        raise

    request_metrics.observe_cascade(kind, round((time.perf_counter() - started) * 1000, 2), False)
    logger.info(
        "%s completed kind=%s entity_id=%s root_deleted=%s counts=%s",
        CASCADE_PREFIX,
        kind,
        entity_id,
        root_deleted,
        counts,
    )
    return CascadeResult(root_deleted_count=root_deleted, per_relation_counts=counts)
