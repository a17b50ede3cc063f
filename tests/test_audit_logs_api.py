import csv
import io
from datetime import datetime, timedelta
from types import SimpleNamespace

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.core.database import Base, get_db
from portal.core.errors import register_exception_handlers
from portal.deps import get_current_user
from portal.models.audit_log import AuditLog
from portal.routers.audit_logs import EXPORT_COLUMNS, router as audit_router
from tests.fixtures_data import EMPLOYEE_PRINCIPAL, MANAGER_PRINCIPAL


def _build_client(principal) -> tuple[TestClient, object]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    now = datetime.utcnow()
    db.add(
        AuditLog(
            id=1,
            action="DELETE_CUSTOMER",
            entity_type="customer",
            entity_id="10",
            user_id="1",
            user_email="admin@servecta.com",
            details={"name": "ACME GmbH"},
            ip_address="203.0.113.7",
            timestamp=now - timedelta(minutes=1),
        )
    )
    db.add(
        AuditLog(
            id=2,
            action="LOGIN",
            entity_type="user",
            entity_id="2",
            user_id="2",
            user_email="manager@servecta.com",
            ip_address="10.0.0.2",
            timestamp=now,
        )
    )
    db.add(
        AuditLog(
            id=3,
            action="UPDATE",
            entity_type="task",
            entity_id="200",
            user_id="3",
            user_email="mitarbeiter@servecta.com",
            ip_address="10.0.0.3",
            timestamp=now - timedelta(days=40),
        )
    )
    db.commit()

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(audit_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(**principal)
    return TestClient(app), db


def test_list_is_newest_first_with_pagination():
    client, _ = _build_client(MANAGER_PRINCIPAL)

    response = client.get("/api/v1/audit-logs", params={"limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert [row["id"] for row in body["data"]] == [2, 1]
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}


def test_list_filters_by_entity_type_action_and_date_range():
    client, _ = _build_client(MANAGER_PRINCIPAL)

    by_type = client.get("/api/v1/audit-logs", params={"entityType": "customer"}).json()
    by_action = client.get("/api/v1/audit-logs", params={"action": "LOGIN"}).json()
    recent = client.get("/api/v1/audit-logs", params={"dateRange": "month"}).json()
    searched = client.get("/api/v1/audit-logs", params={"search": "ACME"}).json()

    assert [row["id"] for row in by_type["data"]] == [1]
    assert [row["id"] for row in by_action["data"]] == [2]
    assert sorted(row["id"] for row in recent["data"]) == [1, 2]
    assert [row["id"] for row in searched["data"]] == [1]


def test_employees_cannot_read_the_audit_trail():
    client, _ = _build_client(EMPLOYEE_PRINCIPAL)

    assert client.get("/api/v1/audit-logs").status_code == 403
    assert client.get("/api/v1/audit-logs/export").status_code == 403


def test_export_streams_csv_attachment():
    client, _ = _build_client(MANAGER_PRINCIPAL)

    response = client.get("/api/v1/audit-logs/export", params={"entityType": "customer"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    disposition = response.headers["content-disposition"]
    assert disposition.startswith("attachment; filename=audit-logs-")
    assert disposition.endswith(".csv")

    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0] == EXPORT_COLUMNS
    assert len(rows) == 2
    assert rows[1][1:6] == ["admin@servecta.com", "DELETE_CUSTOMER", "customer", "10", "203.0.113.7"]
    assert "ACME GmbH" in rows[1][6]
