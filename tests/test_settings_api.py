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
from portal.models.system_settings import SystemSettings
from portal.routers.settings import router as settings_router
from portal.services.settings_service import MASK, load_settings
from tests.fixtures_data import ADMIN_PRINCIPAL, MANAGER_PRINCIPAL, SMTP_SETTINGS


def _build_client(principal=None) -> tuple[TestClient, object]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    db = testing_session_local()

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(settings_router)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: SimpleNamespace(**(principal or ADMIN_PRINCIPAL))
    return TestClient(app), db


def test_get_settings_creates_defaults():
    client, db = _build_client()

    response = client.get("/api/v1/settings")

    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"general", "email_settings", "security", "backup"}
    assert body["security"]["max_login_attempts"] == 5
    assert body["email_settings"]["smtp_pass"] == ""
    assert db.query(SystemSettings).count() == 1


def test_settings_require_admin():
    client, _ = _build_client(MANAGER_PRINCIPAL)

    response = client.get("/api/v1/settings")

    assert response.status_code == 403


def test_update_merges_sections_and_masks_password():
    client, db = _build_client()

    response = client.put("/api/v1/settings", json={"email_settings": SMTP_SETTINGS, "security": {"session_timeout": 60}})

    assert response.status_code == 200
    body = response.json()["settings"]
    assert body["email_settings"]["smtp_pass"] == MASK
    assert body["security"]["session_timeout"] == 60
    assert body["security"]["max_login_attempts"] == 5
    assert load_settings(db)["email_settings"]["smtp_pass"] == "s3cret"

    entry = db.query(AuditLog).one()
    assert entry.action == "UPDATE"
    assert entry.entity_type == "settings"
    assert entry.changes["after"]["email_settings"]["smtp_pass"] == MASK
    assert "s3cret" not in str(entry.changes)


def test_masked_password_round_trip_keeps_stored_secret():
    client, db = _build_client()
    client.put("/api/v1/settings", json={"email_settings": SMTP_SETTINGS})

    masked = client.get("/api/v1/settings").json()
    masked["email_settings"]["smtp_host"] = "mail.servecta.de"
    response = client.put("/api/v1/settings", json={"email_settings": masked["email_settings"]})

    assert response.status_code == 200
    stored = load_settings(db)["email_settings"]
    assert stored["smtp_pass"] == "s3cret"
    assert stored["smtp_host"] == "mail.servecta.de"


def test_invalid_section_values_are_rejected():
    client, _ = _build_client()

    response = client.put("/api/v1/settings", json={"security": {"session_timeout": 0}})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation error"
    assert body["details"][0]["field"] == "security.session_timeout"


def test_test_email_reports_connection_result():
    client, db = _build_client()

    with patch("portal.routers.settings.EmailService.test_connection", return_value=True) as connection:
        response = client.post("/api/v1/settings/test-email", json={})

    assert response.status_code == 200
    assert response.json()["success"] is True
    connection.assert_called_once()
    assert db.query(AuditLog).filter(AuditLog.action == "TEST_EMAIL").count() == 1


def test_test_email_sends_to_recipient():
    client, _ = _build_client()

    with patch("portal.routers.settings.EmailService.send_test_email", return_value=False) as send:
        response = client.post("/api/v1/settings/test-email", json={"to": "ops@servecta.de"})

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "message": "Failed to send test email",
        "smtp": {"host": "", "port": 587, "ssl": False, "from": "noreply@servecta.de", "configured": False},
    }
    send.assert_called_once_with("ops@servecta.de")
