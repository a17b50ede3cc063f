from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, require_role
from portal.models.user import User
from portal.services.audit import log_action
from portal.services.email_service import EmailService, smtp_diagnostics
from portal.services.settings_service import load_settings, masked, update_settings

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])
logger = logging.getLogger(__name__)


class GeneralSettings(BaseModel):
    company_name: Optional[str] = None
    company_email: Optional[EmailStr] = None
    timezone: Optional[str] = None
    language: Optional[str] = None


class EmailSettings(BaseModel):
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = Field(None, ge=1, le=65535)
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None
    smtp_secure: Optional[bool] = None
    notifications_enabled: Optional[bool] = None
    task_deadline_notifications: Optional[bool] = None
    ticket_notifications: Optional[bool] = None


class SecuritySettings(BaseModel):
    session_timeout: Optional[int] = Field(None, ge=1, le=1440)
    max_login_attempts: Optional[int] = Field(None, ge=1, le=100)
    require_two_factor: Optional[bool] = None
    password_min_length: Optional[int] = Field(None, ge=6, le=128)


class BackupSettings(BaseModel):
    auto_backup: Optional[bool] = None
    backup_frequency: Optional[Literal["hourly", "daily", "weekly", "monthly"]] = None
    backup_retention: Optional[int] = Field(None, ge=1, le=3650)


class SettingsUpdate(BaseModel):
    general: Optional[GeneralSettings] = None
    email_settings: Optional[EmailSettings] = None
    security: Optional[SecuritySettings] = None
    backup: Optional[BackupSettings] = None


class TestEmailPayload(BaseModel):
    to: Optional[EmailStr] = None


@router.get("")
def get_settings(
    _user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    return load_settings(db, mask_secrets=True)


@router.put("")
def put_settings(
    payload: SettingsUpdate,
    request: Request,
    user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    updates: Dict[str, Dict[str, Any]] = {}
    for section, values in payload.model_dump(exclude_unset=True).items():
        if values:
            updates[section] = {key: value for key, value in values.items() if value is not None}

    before, after = update_settings(db, updates)
    log_action(
        db,
        action="UPDATE",
        entity_type="settings",
        entity_id="system",
        actor=user,
        ip_address=client_ip(request),
        changes={"before": masked(before), "after": masked(after)},
    )
    db.commit()
    logger.info("System settings updated sections=%s user_id=%s", sorted(updates), user.id)
    return {"message": "Settings updated successfully", "settings": masked(after)}


@router.post("/test-email")
def test_email(
    payload: TestEmailPayload,
    request: Request,
    user: User = Depends(require_role(["ADMIN"])),
    db: Session = Depends(get_db),
):
    email_settings = load_settings(db)["email_settings"]
    service = EmailService(email_settings)
    diagnostics = smtp_diagnostics(email_settings)

    if payload.to:
        ok = service.send_test_email(str(payload.to))
        message = "Test email sent successfully" if ok else "Failed to send test email"
    else:
        ok = service.test_connection()
        message = "SMTP connection successful" if ok else "SMTP connection failed"

    log_action(
        db,
        action="TEST_EMAIL",
        entity_type="settings",
        entity_id="system",
        actor=user,
        ip_address=client_ip(request),
        details={"to": payload.to, "success": ok},
    )
    db.commit()
    return {"success": ok, "message": message, "smtp": diagnostics}
