import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine

from portal.core import config
from portal.core.logging_setup import JsonFormatter
from portal.core.request_context import bind_request_value, close_request_context, open_request_context
from portal.core.startup_checks import apply_migrations, ensure_migrations_applied, validate_database_environment

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def test_migrations_are_not_applied_unless_enabled(monkeypatch):
    monkeypatch.setattr(config, "AUTO_APPLY_MIGRATIONS", False)

    with patch("portal.core.startup_checks.command.upgrade") as upgrade:
        apply_migrations(alembic_config_path=ALEMBIC_INI)

    upgrade.assert_not_called()


def test_enabled_migrations_upgrade_to_head_without_touching_logging(monkeypatch):
    monkeypatch.setattr(config, "AUTO_APPLY_MIGRATIONS", True)

    with patch("portal.core.startup_checks.command.upgrade") as upgrade:
        apply_migrations(alembic_config_path=ALEMBIC_INI)

    alembic_cfg, revision = upgrade.call_args.args
    assert revision == "head"
    assert alembic_cfg.attributes["configure_logger"] is False


def test_missing_alembic_config_fails_startup(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "AUTO_APPLY_MIGRATIONS", True)

    with pytest.raises(RuntimeError, match="alembic config not found"):
        apply_migrations(alembic_config_path=tmp_path / "missing.ini")


def test_unmigrated_database_is_refused(monkeypatch):
    monkeypatch.setattr(config, "IS_TEST", False)
    monkeypatch.setattr(config, "IS_DEV", False)
    engine = create_engine("sqlite+pysqlite:///:memory:")

    with pytest.raises(RuntimeError, match="Pending migrations detected"):
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_INI)


def test_migration_check_is_skipped_in_test_mode(monkeypatch):
    monkeypatch.setattr(config, "IS_TEST", True)

    ensure_migrations_applied(engine=None, alembic_config_path=ALEMBIC_INI)


def test_sqlite_is_rejected_in_production(monkeypatch):
    monkeypatch.setattr(config, "IS_PROD", True)
    monkeypatch.setattr(config, "DATABASE_URL", "sqlite:///./portal.db")

    with pytest.raises(RuntimeError, match="SQLite is forbidden"):
        validate_database_environment()


def _record(message, *args, **extra):
    record = logging.LogRecord("portal.test", logging.INFO, __file__, 1, message, args, None)
    record.__dict__.update(extra)
    return record


def test_log_lines_carry_request_context_and_mask_secrets():
    token = open_request_context(request_id="req-1", client_ip="10.0.0.1")
    try:
        bind_request_value("user_id", "7")
        line = JsonFormatter().format(_record("login failed password=%s", "hunter2", status_code=401))
    finally:
        close_request_context(token)

    payload = json.loads(line)
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "7"
    assert payload["client_ip"] == "10.0.0.1"
    assert payload["status_code"] == 401
    assert payload["message"] == "login failed password=***"
    assert "hunter2" not in line


def test_log_lines_outside_a_request_have_empty_context():
    payload = json.loads(JsonFormatter().format(_record("Authorization: Bearer abc.def")))

    assert payload["request_id"] is None
    assert payload["user_id"] is None
    assert payload["message"] == "Authorization: Bearer ***"
