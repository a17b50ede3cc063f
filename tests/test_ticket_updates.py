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
from portal.models.customer import Customer
from portal.models.ticket import Ticket
from portal.models.user import User
from portal.routers.tickets import router as tickets_router
from tests.fixtures_data import CONSUMER_PRINCIPAL, CUSTOMER_ROW, MANAGER_PRINCIPAL


def _build_client(principal) -> tuple[TestClient, object]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    db.add(Customer(**CUSTOMER_ROW))
    db.add(Customer(id=11, legal_name="Globex AG", tags=[]))
    db.add(User(id=3, email="mitarbeiter@servecta.com", name="Mitarbeiter", password_hash="x", departments=[]))
    db.add(
        User(
            id=4,
            user_type="CONSUMER",
            email="kunde@acme.de",
            name="Kunde",
            password_hash="x",
            role="KUNDE",
            customer_id=10,
            departments=[],
        )
    )
    db.add(Ticket(id=5, title="Drucker defekt", customer_id=10, tags=[], departments=["IT"]))
    db.add(Ticket(id=6, title="Globex VPN", customer_id=11, tags=[], departments=[]))
    db.commit()

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(tickets_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(**principal)
    return TestClient(app), db


def test_status_change_queues_notice_for_assignee_and_customer():
    client, db = _build_client(MANAGER_PRINCIPAL)

    with patch("portal.routers.tickets.dispatch_ticket_notice") as dispatch:
        response = client.put("/api/v1/tickets/5", json={"status": "IN_PROGRESS", "assignee_id": 3})

    assert response.status_code == 200
    assert response.json()["status"] == "IN_PROGRESS"
    dispatch.assert_called_once()
    _settings, notice, summary = dispatch.call_args.args
    assert notice.assignee_email == "mitarbeiter@servecta.com"
    assert notice.customer_email == "kunde@acme.de"
    assert notice.customer_name == "ACME GmbH"
    assert notice.changed_by == "Manager"
    assert 'Status geändert von "OPEN" zu "IN_PROGRESS"' in summary
    assert 'Zuweisung geändert von "Nicht zugewiesen" zu "Mitarbeiter"' in summary

    entry = db.query(AuditLog).one()
    assert entry.action == "UPDATE"
    assert entry.changes["before"]["status"] == "OPEN"
    assert entry.changes["after"]["status"] == "IN_PROGRESS"


def test_title_only_change_sends_no_notice():
    client, _ = _build_client(MANAGER_PRINCIPAL)

    with patch("portal.routers.tickets.dispatch_ticket_notice") as dispatch:
        response = client.put("/api/v1/tickets/5", json={"title": "Drucker im 2. OG"})

    assert response.status_code == 200
    dispatch.assert_not_called()


def test_unknown_assignee_is_rejected():
    client, db = _build_client(MANAGER_PRINCIPAL)

    response = client.put("/api/v1/tickets/5", json={"assignee_id": 404})

    assert response.status_code == 400
    assert response.json() == {"error": "Assignee does not exist"}
    assert db.query(AuditLog).count() == 0


def test_null_on_required_field_is_a_validation_error():
    client, db = _build_client(MANAGER_PRINCIPAL)

    response = client.put("/api/v1/tickets/5", json={"title": None, "description": None})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation error"
    assert [detail["field"] for detail in body["details"]] == ["title"]
    assert db.query(Ticket).filter(Ticket.id == 5).one().title
    assert db.query(AuditLog).count() == 0


def test_consumer_ticket_is_bound_to_own_customer():
    client, db = _build_client(CONSUMER_PRINCIPAL)

    response = client.post(
        "/api/v1/tickets",
        json={"title": "Passwort vergessen", "customer_id": 11, "assignee_id": 3},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["customer_id"] == 10
    assert body["assignee_id"] is None
    assert body["reporter_id"] == 4


def test_consumer_lists_only_own_tickets_and_cannot_update():
    client, _ = _build_client(CONSUMER_PRINCIPAL)

    listed = client.get("/api/v1/tickets", params={"customer_id": 11})
    foreign = client.get("/api/v1/tickets/6")
    update = client.put("/api/v1/tickets/5", json={"status": "CLOSED"})

    assert [row["id"] for row in listed.json()["data"]] == [5]
    assert foreign.status_code == 403
    assert update.status_code == 403


def test_department_filter_matches_json_list():
    client, _ = _build_client(MANAGER_PRINCIPAL)

    response = client.get("/api/v1/tickets", params={"department": "IT"})

    assert [row["id"] for row in response.json()["data"]] == [5]
    assert response.json()["pagination"]["total"] == 1
