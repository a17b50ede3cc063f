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
from portal.models.notification import Notification
from portal.routers.notifications import router as notifications_router
from tests.fixtures_data import CONSUMER_PRINCIPAL, EMPLOYEE_PRINCIPAL


def _build_client(principal) -> tuple[TestClient, object]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    now = datetime(2026, 3, 2, 9, 0, 0)
    db.add(Notification(id=1, user_id=3, type="TASK", title="Neue Aufgabe", message="Bitte prüfen", timestamp=now))
    db.add(
        Notification(
            id=2,
            user_id=None,
            type="SYSTEM",
            title="Wartung",
            message="Heute Abend",
            timestamp=now + timedelta(minutes=5),
        )
    )
    db.add(
        Notification(
            id=3,
            user_id=3,
            type="INFO",
            title="Gelesen",
            message="Schon gesehen",
            read=True,
            timestamp=now - timedelta(days=1),
        )
    )
    db.add(Notification(id=4, user_id=99, type="INFO", title="Fremd", message="Nicht sichtbar", timestamp=now))
    db.commit()

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(notifications_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(**principal)
    return TestClient(app), db


def test_list_includes_own_and_broadcast_notifications():
    client, _ = _build_client(EMPLOYEE_PRINCIPAL)

    response = client.get("/api/v1/notifications")

    assert response.status_code == 200
    body = response.json()
    assert [row["id"] for row in body["notifications"]] == [2, 1, 3]
    assert body["unread_count"] == 2


def test_mark_single_notification_read():
    client, db = _build_client(EMPLOYEE_PRINCIPAL)

    response = client.put("/api/v1/notifications/1/read")

    assert response.status_code == 200
    assert response.json()["read"] is True
    assert db.query(Notification).filter(Notification.id == 1).one().read_at is not None


def test_foreign_notification_is_not_found():
    client, db = _build_client(EMPLOYEE_PRINCIPAL)

    response = client.put("/api/v1/notifications/4/read")

    assert response.status_code == 404
    assert response.json() == {"error": "Notification not found"}
    assert db.query(Notification).filter(Notification.id == 4).one().read is False


def test_read_all_only_touches_visible_notifications():
    client, db = _build_client(EMPLOYEE_PRINCIPAL)

    response = client.put("/api/v1/notifications/read-all")

    assert response.status_code == 200
    assert response.json() == {"message": "All notifications marked as read", "updated": 2}
    db.expire_all()
    assert db.query(Notification).filter(Notification.id == 4).one().read is False


def test_staff_can_create_notification_for_user():
    client, db = _build_client(EMPLOYEE_PRINCIPAL)

    response = client.post(
        "/api/v1/notifications",
        json={"user_id": 4, "type": "TICKET", "title": "Ticket beantwortet", "message": "Siehe Portal"},
    )

    assert response.status_code == 201
    assert response.json()["user_id"] == 4
    assert response.json()["read"] is False
    entry = db.query(AuditLog).one()
    assert entry.entity_type == "notification"
    assert entry.details["target_user_id"] == 4


def test_consumer_cannot_create_notifications():
    client, db = _build_client(CONSUMER_PRINCIPAL)

    response = client.post("/api/v1/notifications", json={"title": "x", "message": "y"})

    assert response.status_code == 403
    assert db.query(Notification).count() == 4
