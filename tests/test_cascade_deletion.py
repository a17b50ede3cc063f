from types import SimpleNamespace
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.core.database import Base, get_db
from portal.core.errors import register_exception_handlers
from portal.deps import get_current_user
from portal.models.audit_log import AuditLog
from portal.models.comment import Comment
from portal.models.customer import Customer
from portal.models.customer_address import Address
from portal.models.customer_contact import Contact
from portal.models.project import Project
from portal.models.quote import Quote
from portal.models.task import Task
from portal.models.ticket import Ticket
from portal.models.user import User
from portal.routers.customers import router as customers_router
from portal.routers.projects import router as projects_router
from portal.routers.tasks import router as tasks_router
from portal.routers.users import router as users_router
from portal.services import cascade
from portal.services.cascade import ROOTS
from tests.fixtures_data import ADMIN_PRINCIPAL


def _build_client(principal=None) -> tuple[TestClient, object]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    db.add(Customer(id=10, legal_name="ACME GmbH", status="ACTIVE", tags=[]))
    db.add(Customer(id=11, legal_name="Other AG", status="ACTIVE", tags=[]))
    db.add(Address(id=1, customer_id=10, street="Hauptstr. 1", city="Berlin", postal_code="10115", country="DE"))
    db.add(Contact(id=1, customer_id=10, name="Anna"))
    db.add(Project(id=100, customer_id=10, name="Website", tags=[], departments=["IT"]))
    db.add(Project(id=101, customer_id=11, name="Other project", tags=[], departments=[]))
    db.add(Quote(id=1, customer_id=10, project_id=None, title="Angebot", amount=1200.0))
    db.add(Task(id=200, title="Design", project_id=100, customer_id=10, departments=[]))
    db.add(Task(id=201, title="Mockups", project_id=100, customer_id=10, parent_task_id=200, departments=[]))
    db.add(Task(id=202, title="Standalone", customer_id=10, departments=[]))
    db.add(Task(id=203, title="Other customer task", project_id=101, customer_id=11, departments=[]))
    db.add(Ticket(id=300, title="Login broken", customer_id=10, tags=[], departments=[]))
    db.add(Ticket(id=301, title="Other ticket", customer_id=11, tags=[], departments=[]))
    db.add(Comment(id=400, task_id=200, author_id=3, content="Looks good"))
    db.add(Comment(id=401, task_id=201, author_id=3, content="Done"))
    db.add(Comment(id=402, ticket_id=300, author_id=3, content="Investigating"))
    db.add(Comment(id=403, task_id=203, author_id=3, content="Untouched"))
    db.commit()

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(customers_router)
    app.include_router(projects_router)
    app.include_router(tasks_router)
    app.include_router(users_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(**(principal or ADMIN_PRINCIPAL))

    return TestClient(app), db


def _audit_entries(db):
    return db.query(AuditLog).all()


def test_delete_customer_removes_whole_aggregate_and_writes_one_audit_entry():
    client, db = _build_client()

    response = client.delete("/api/v1/customers/10")

    assert response.status_code == 200
    body = response.json()
    assert body["root_deleted_count"] == 1
    assert body["per_relation_counts"]["addresses"] == 1
    assert body["per_relation_counts"]["projects"] == 1
    assert body["per_relation_counts"]["tickets"] == 1

    assert db.query(Customer).filter(Customer.id == 10).first() is None
    assert db.query(Address).count() == 0
    assert db.query(Contact).count() == 0
    assert db.query(Quote).count() == 0
    assert {row.id for row in db.query(Project).all()} == {101}
    assert {row.id for row in db.query(Task).all()} == {203}
    assert {row.id for row in db.query(Ticket).all()} == {301}
    assert {row.id for row in db.query(Comment).all()} == {403}

    entries = _audit_entries(db)
    assert len(entries) == 1
    assert entries[0].action == "DELETE_CUSTOMER"
    assert entries[0].entity_type == "customer"
    assert entries[0].entity_id == "10"
    assert entries[0].user_email == ADMIN_PRINCIPAL["email"]
    assert entries[0].details["customer_name"] == "ACME GmbH"
    assert entries[0].details["reason"] == "GDPR compliant deletion"


def test_delete_project_keeps_customer_and_unrelated_records():
    client, db = _build_client()

    response = client.delete("/api/v1/projects/100")

    assert response.status_code == 200
    assert db.query(Customer).filter(Customer.id == 10).first() is not None
    assert db.query(Task).filter(Task.id.in_([200, 201])).count() == 0
    assert db.query(Task).filter(Task.id == 202).first() is not None
    assert db.query(Comment).filter(Comment.id.in_([400, 401])).count() == 0
    assert db.query(Comment).filter(Comment.id == 402).first() is not None

    entries = _audit_entries(db)
    assert [entry.action for entry in entries] == ["DELETE_PROJECT"]


def test_delete_user_detaches_assignments_and_keeps_comments():
    client, db = _build_client()
    db.add(User(id=20, user_type="STAFF", email="worker@servecta.com", name="Worker", password_hash="x", role="MITARBEITER"))
    db.query(Task).filter(Task.id == 202).update({Task.assignee_id: 20})
    db.query(Project).filter(Project.id == 100).update({Project.assignee_id: 20})
    db.query(Ticket).filter(Ticket.id == 300).update({Ticket.assignee_id: 20})
    db.add(Comment(id=404, task_id=202, author_id=20, content="My note"))
    db.commit()

    response = client.delete("/api/v1/users/20")

    assert response.status_code == 200
    body = response.json()
    assert body["root_deleted_count"] == 1
    assert body["per_relation_counts"] == {"tasks": 1, "projects": 1, "tickets": 1}

    assert db.query(User).filter(User.id == 20).first() is None
    assert db.query(Task).filter(Task.id == 202).one().assignee_id is None
    assert db.query(Project).filter(Project.id == 100).one().assignee_id is None
    assert db.query(Ticket).filter(Ticket.id == 300).one().assignee_id is None
    assert db.query(Comment).filter(Comment.id == 404).first() is not None

    entries = _audit_entries(db)
    assert len(entries) == 1
    assert entries[0].action == "DELETE_USER"
    assert entries[0].details["user_email"] == "worker@servecta.com"


def test_delete_missing_customer_returns_404_without_audit():
    client, db = _build_client()

    response = client.delete("/api/v1/customers/999")

    assert response.status_code == 404
    assert response.json() == {"error": "Customer not found"}
    assert _audit_entries(db) == []


def test_delete_own_account_is_rejected():
    client, db = _build_client()
    db.add(User(id=1, user_type="STAFF", email="admin@servecta.com", name="Admin", password_hash="x", role="ADMIN"))
    db.commit()

    response = client.delete("/api/v1/users/1")

    assert response.status_code == 400
    assert response.json() == {"error": "Cannot delete your own account"}
    assert db.query(User).filter(User.id == 1).first() is not None
    assert _audit_entries(db) == []


def test_delete_subtask_endpoint_rejects_top_level_task():
    client, db = _build_client()

    response = client.delete("/api/v1/tasks/subtasks/200")

    assert response.status_code == 400
    assert response.json() == {"error": "This is not a subtask"}
    assert db.query(Task).filter(Task.id == 200).first() is not None
    assert _audit_entries(db) == []


def test_delete_subtask_removes_only_subtask_and_its_comments():
    client, db = _build_client()

    response = client.delete("/api/v1/tasks/subtasks/201")

    assert response.status_code == 200
    assert db.query(Task).filter(Task.id == 201).first() is None
    assert db.query(Comment).filter(Comment.id == 401).first() is None
    assert db.query(Task).filter(Task.id == 200).first() is not None
    assert [entry.action for entry in _audit_entries(db)] == ["DELETE_SUBTASK"]


def test_delete_requires_manager_role():
    client, db = _build_client(
        principal={**ADMIN_PRINCIPAL, "id": 3, "role": "MITARBEITER", "email": "worker@servecta.com"}
    )

    response = client.delete("/api/v1/customers/10")

    assert response.status_code == 403
    assert response.json() == {"error": "Insufficient permissions"}
    assert db.query(Customer).filter(Customer.id == 10).first() is not None


def test_mid_cascade_failure_keeps_completed_units_and_reports_them():
    client, db = _build_client()
    original = cascade._run_relation

    def _failing_run_relation(session, relation, parent_ids, path):
        if path == "tickets":
            raise RuntimeError("store unavailable")
        return original(session, relation, parent_ids, path)

    with patch("portal.services.cascade._run_relation", side_effect=_failing_run_relation):
        response = client.delete("/api/v1/customers/10")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal server error"
    assert body["completed"]["addresses"] == 1
    assert body["completed"]["projects"] == 1
    assert "tickets" not in body["completed"]

    # earlier relations stay deleted; the failing one, later ones and the root remain
    assert db.query(Address).count() == 0
    assert db.query(Project).filter(Project.id == 100).first() is None
    assert db.query(Ticket).filter(Ticket.id == 300).first() is not None
    assert db.query(Task).filter(Task.id == 202).first() is not None
    assert db.query(Customer).filter(Customer.id == 10).first() is not None

    entries = _audit_entries(db)
    assert len(entries) == 1
    assert entries[0].action == "DELETE_CUSTOMER"


def test_audit_action_literals_per_root_kind():
    assert {kind: root.action for kind, root in ROOTS.items()} == {
        "customer": "DELETE_CUSTOMER",
        "project": "DELETE_PROJECT",
        "task": "DELETE_TASK",
        "subtask": "DELETE_SUBTASK",
        "ticket": "DELETE_TICKET",
        "user": "DELETE_USER",
        "consumer": "DELETE_CONSUMER",
        "comment": "DELETE_COMMENT",
    }


def test_moving_a_task_carries_its_subtasks_along():
    client, db = _build_client()

    moved = client.put("/api/v1/tasks/200", json={"project_id": 101, "customer_id": 11})
    deleted = client.delete("/api/v1/projects/100")

    assert moved.status_code == 200
    assert deleted.status_code == 200
    subtask = db.query(Task).filter(Task.id == 201).one()
    assert (subtask.project_id, subtask.customer_id) == (101, 11)
    assert db.query(Task).filter(Task.id == 200).one().project_id == 101
    assert db.query(Comment).filter(Comment.id == 401).first() is not None


def test_subtask_cannot_leave_its_parent_project():
    client, db = _build_client()

    via_subtask_route = client.put("/api/v1/tasks/subtasks/201", json={"project_id": 101})
    via_task_route = client.put("/api/v1/tasks/201", json={"customer_id": 11})

    assert via_subtask_route.status_code == 400
    assert via_task_route.status_code == 400
    assert via_task_route.json() == {"error": "Subtasks inherit project and customer from their parent task"}
    assert db.query(Task).filter(Task.id == 201).one().project_id == 100


def test_delete_task_route_with_subtask_id_records_subtask_deletion():
    client, db = _build_client()

    response = client.delete("/api/v1/tasks/201")

    assert response.status_code == 200
    assert response.json()["message"] == "Subtask deleted successfully"
    assert db.query(Task).filter(Task.id == 201).first() is None
    assert db.query(Task).filter(Task.id == 200).first() is not None
    entries = _audit_entries(db)
    assert [(entry.action, entry.entity_type) for entry in entries] == [("DELETE_SUBTASK", "subtask")]


def test_project_update_rejects_null_customer():
    client, db = _build_client()

    response = client.put("/api/v1/projects/100", json={"customer_id": None})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation error"
    assert [detail["field"] for detail in body["details"]] == ["customer_id"]
    assert db.query(Project).filter(Project.id == 100).one().customer_id == 10
