import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal.core.config import CORS_ORIGINS, DATABASE_URL
from portal.core.database import Base, SessionLocal, engine
from portal.core.errors import register_exception_handlers
from portal.core.logging_setup import configure_logging
from portal.core.startup_checks import apply_migrations, ensure_migrations_applied, validate_database_environment
from portal.middleware.observability import ObservabilityMiddleware
import portal.models  # models must be imported before create_all

from portal.services.user_bootstrap import ensure_users_table, upsert_staff_user
from portal.routers.auth import router as auth_router
from portal.routers.customers import router as customers_router
from portal.routers.projects import router as projects_router
from portal.routers.tasks import router as tasks_router
from portal.routers.tickets import router as tickets_router
from portal.routers.users import router as users_router
from portal.routers.consumers import router as consumers_router
from portal.routers.audit_logs import router as audit_logs_router
from portal.routers.notifications import router as notifications_router
from portal.routers.settings import router as settings_router
from portal.routers.dashboard import router as dashboard_router
from portal.routers.system import router as system_router
from portal.routers.cron import router as cron_router
from portal.routers.portal_ui import router as portal_ui_router

configure_logging()

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[ADMIN_BOOTSTRAP]"
DEFAULT_ADMIN_EMAIL = "admin@servecta.com"
DEFAULT_ADMIN_NAME = "Admin"
DEFAULT_ADMIN_ROLE = "ADMIN"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Servecta Portal API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)
register_exception_handlers(app)


def _bootstrap_initial_admin() -> None:
    dev_admin_password = os.getenv("DEV_ADMIN_PASSWORD", "").strip()
    if not dev_admin_password:
        logger.warning("%s skipped: configure DEV_ADMIN_PASSWORD.", BOOTSTRAP_PREFIX)
        return

    dev_admin_email = os.getenv("DEV_ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL).strip() or DEFAULT_ADMIN_EMAIL
    dev_admin_name = os.getenv("DEV_ADMIN_NAME", DEFAULT_ADMIN_NAME).strip() or DEFAULT_ADMIN_NAME
    logger.info("%s start email=%s", BOOTSTRAP_PREFIX, dev_admin_email)

    ensure_users_table(engine)
    db = SessionLocal()
    try:
        admin, created = upsert_staff_user(
            db,
            email=dev_admin_email,
            name=dev_admin_name,
            role=DEFAULT_ADMIN_ROLE,
            password=dev_admin_password,
        )
        logger.info(
            "%s %s id=%s email=%s",
            BOOTSTRAP_PREFIX,
            "created" if created else "updated",
            admin.id,
            admin.email,
        )
    except Exception:
        logger.exception("%s ERROR bootstrap failed", BOOTSTRAP_PREFIX)
        raise
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        apply_migrations(alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        _bootstrap_initial_admin()
    except Exception:
        logger.exception("%s ERROR startup failed", BOOTSTRAP_PREFIX)
        raise


# Routers
app.include_router(auth_router)
app.include_router(customers_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(tickets_router)
app.include_router(users_router)
app.include_router(consumers_router)
app.include_router(audit_logs_router)
app.include_router(notifications_router)
app.include_router(settings_router)
app.include_router(dashboard_router)
app.include_router(system_router)
app.include_router(cron_router)
app.include_router(portal_ui_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
