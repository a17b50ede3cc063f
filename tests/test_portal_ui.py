from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.core.database import Base, get_db
from portal.core.errors import register_exception_handlers
from portal.models.customer import Customer
from portal.models.user import User
from portal.routers.portal_ui import router as portal_ui_router
from portal.services.passwords import hash_password
from tests.fixtures_data import CUSTOMER_ROW

TEST_SECRET = "test-secret-with-enough-entropy"


def _build_client(monkeypatch) -> TestClient:
    monkeypatch.setattr("portal.services.session.SESSION_SECRET", TEST_SECRET)
    monkeypatch.setattr("portal.services.auth.JWT_SECRET_KEY", TEST_SECRET)

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    db.add(Customer(**CUSTOMER_ROW))
    db.add(
        User(
            id=1,
            email="admin@servecta.com",
            name="Admin",
            role="ADMIN",
            password_hash=hash_password("correct-horse"),
            departments=[],
        )
    )
    db.add(
        User(
            id=4,
            user_type="CONSUMER",
            email="kunde@acme.de",
            name="Kunde",
            role="KUNDE",
            customer_id=10,
            password_hash=hash_password("correct-horse"),
            departments=[],
        )
    )
    db.commit()

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(portal_ui_router)
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app)


def test_overview_redirects_to_login_without_session(monkeypatch):
    client = _build_client(monkeypatch)

    response = client.get("/portal", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/portal/login"


def test_login_page_renders_form(monkeypatch):
    client = _build_client(monkeypatch)

    response = client.get("/portal/login")

    assert response.status_code == 200
    assert "<form method=\"post\" action=\"/portal/login\">" in response.text


def test_bad_credentials_rerender_login_page(monkeypatch):
    client = _build_client(monkeypatch)

    response = client.post("/portal/login", data={"email": "admin@servecta.com", "password": "wrong"})

    assert response.status_code == 401
    assert "Ungültige Anmeldedaten" in response.text


def test_successful_login_opens_overview(monkeypatch):
    client = _build_client(monkeypatch)

    login = client.post(
        "/portal/login",
        data={"email": "admin@servecta.com", "password": "correct-horse"},
        follow_redirects=False,
    )
    assert login.status_code == 303
    assert login.headers["location"] == "/portal"

    overview = client.get("/portal")

    assert overview.status_code == 200
    assert "Kunden" in overview.text
    assert "LOGIN" in overview.text


def test_consumer_session_cannot_open_staff_overview(monkeypatch):
    client = _build_client(monkeypatch)
    client.post(
        "/portal/login",
        data={"email": "kunde@acme.de", "password": "correct-horse"},
        follow_redirects=False,
    )

    response = client.get("/portal", follow_redirects=False)

    assert response.status_code == 403
