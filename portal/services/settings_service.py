from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from portal.models.system_settings import SystemSettings

logger = logging.getLogger(__name__)

SETTINGS_TYPE = "system"
SECTIONS = ("general", "email_settings", "security", "backup")
MASK = "********"

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    "general": {
        "company_name": "Servecta Admin",
        "company_email": "admin@servecta.com",
        "timezone": "Europe/Berlin",
        "language": "de",
    },
    "email_settings": {
        "smtp_host": "",
        "smtp_port": 587,
        "smtp_user": "",
        "smtp_pass": "",
        "smtp_from": "",
        "smtp_secure": False,
        "notifications_enabled": True,
        "task_deadline_notifications": True,
        "ticket_notifications": True,
    },
    "security": {
        "session_timeout": 30,
        "max_login_attempts": 5,
        "require_two_factor": False,
        "password_min_length": 8,
    },
    "backup": {
        "auto_backup": True,
        "backup_frequency": "daily",
        "backup_retention": 30,
    },
}


def get_or_create_settings(db: Session) -> SystemSettings:
    settings = db.query(SystemSettings).filter(SystemSettings.type == SETTINGS_TYPE).first()
    if settings is not None:
        return settings

    settings = SystemSettings(type=SETTINGS_TYPE, **copy.deepcopy(DEFAULT_SETTINGS))
    db.add(settings)
    db.commit()
    db.refresh(settings)
    logger.info("Default system settings created id=%s", settings.id)
    return settings


def settings_snapshot(settings: SystemSettings, *, mask_secrets: bool = False) -> Dict[str, Dict[str, Any]]:
    snapshot: Dict[str, Dict[str, Any]] = {}
    for section in SECTIONS:
        merged = dict(DEFAULT_SETTINGS[section])
        merged.update(getattr(settings, section) or {})
        snapshot[section] = merged
    if mask_secrets and snapshot["email_settings"].get("smtp_pass"):
        snapshot["email_settings"]["smtp_pass"] = MASK
    return snapshot


def load_settings(db: Session, *, mask_secrets: bool = False) -> Dict[str, Dict[str, Any]]:
    return settings_snapshot(get_or_create_settings(db), mask_secrets=mask_secrets)


def update_settings(
    db: Session, updates: Mapping[str, Optional[Mapping[str, Any]]]
) -> tuple[Dict[str, Dict[str, Any]], Dict[str, Dict[str, Any]]]:
    """Merge ``updates`` section by section and return (before, after) snapshots.

    A masked password sent back unchanged keeps the stored one. Nothing is
    committed here.
    """
    settings = get_or_create_settings(db)
    before = settings_snapshot(settings)

    for section in SECTIONS:
        incoming = updates.get(section)
        if not incoming:
            continue
        merged = dict(before[section])
        for key, value in incoming.items():
            if section == "email_settings" and key == "smtp_pass" and value == MASK:
                continue
            merged[key] = value
        setattr(settings, section, merged)

    db.flush()
    return before, settings_snapshot(settings)


def security_setting(db: Session, key: str) -> Any:
    return load_settings(db)["security"].get(key, DEFAULT_SETTINGS["security"].get(key))


def masked(snapshot: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    result = copy.deepcopy(snapshot)
    if result.get("email_settings", {}).get("smtp_pass"):
        result["email_settings"]["smtp_pass"] = MASK
    return result
