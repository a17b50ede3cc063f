from __future__ import annotations

import html
import logging
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import format_datetime, make_msgid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from portal.core.config import PORTAL_BASE_URL
from portal.services.settings_service import load_settings

logger = logging.getLogger(__name__)
MAIL_PREFIX = "[MAIL]"

DEFAULT_FROM = "noreply@servecta.de"
SMTP_TIMEOUT_SECONDS = 20

STATUS_LABELS = {
    "OPEN": "Offen",
    "IN_PROGRESS": "In Bearbeitung",
    "RESOLVED": "Gelöst",
    "CLOSED": "Geschlossen",
    "CANCELLED": "Storniert",
}
PRIORITY_LABELS = {
    "LOW": "Niedrig",
    "MEDIUM": "Mittel",
    "HIGH": "Hoch",
    "URGENT": "Dringend",
}


@dataclass
class TaskDeadlineNotice:
    task_title: str
    due_date: datetime
    assignee_name: str
    assignee_email: str
    days_until_due: int
    task_description: Optional[str] = None
    project_name: Optional[str] = None
    customer_name: Optional[str] = None


@dataclass
class TicketChangeNotice:
    ticket_title: str
    ticket_status: str
    ticket_priority: str
    changed_by: str
    ticket_description: Optional[str] = None
    assignee_name: Optional[str] = None
    assignee_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


def _urgency_label(days_until_due: int) -> str:
    if days_until_due <= 0:
        return "HEUTE FÄLLIG"
    if days_until_due == 1:
        return "MORGEN FÄLLIG"
    return f"{days_until_due} TAGE FÄLLIG"


def _html_page(title: str, rows: List[str], link: str, link_label: str) -> str:
    items = "".join(f"<p style='margin:5px 0'>{row}</p>" for row in rows if row)
    return f"""<!doctype html>
<html>
<head><meta charset="utf-8" /><title>{html.escape(title)}</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-size: 22px;">{html.escape(title)}</h1>
    {items}
    <p style="margin-top: 20px;"><a href="{link}">{link_label}</a></p>
    <p style="font-size: 13px; color: #6b7280;">Diese Benachrichtigung wurde automatisch generiert.</p>
  </div>
</body>
</html>"""


class EmailService:
    """SMTP sender configured from the stored ``email_settings`` section.

    Every public send method returns ``True``/``False``; transport errors are
    logged and never raised to the caller.
    """

    def __init__(self, email_settings: Mapping[str, Any], base_url: str = PORTAL_BASE_URL) -> None:
        self.settings = dict(email_settings or {})
        self.base_url = base_url

    @classmethod
    def from_db(cls, db: Session) -> "EmailService":
        return cls(load_settings(db)["email_settings"])

    @property
    def host(self) -> str:
        return str(self.settings.get("smtp_host") or "").strip()

    @property
    def port(self) -> int:
        try:
            return int(self.settings.get("smtp_port") or 587)
        except (TypeError, ValueError):
            return 587

    @property
    def use_ssl(self) -> bool:
        # 465 is implicit TLS; 587 and 25 negotiate STARTTLS regardless of the flag
        if self.port == 465:
            return True
        if self.port in (587, 25):
            return False
        return bool(self.settings.get("smtp_secure"))

    @property
    def sender(self) -> str:
        return str(self.settings.get("smtp_from") or "").strip() or DEFAULT_FROM

    def is_configured(self) -> bool:
        return bool(self.host)

    def _flag(self, key: str) -> bool:
        return bool(self.settings.get(key, True))

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_ssl:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(
                self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS, context=context
            )
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls(context=context)
                smtp.ehlo()
        user = str(self.settings.get("smtp_user") or "").strip()
        if user:
            smtp.login(user, str(self.settings.get("smtp_pass") or ""))
        return smtp

    def _build_message(self, recipients: List[str], subject: str, text: str, html_body: Optional[str]) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain="servecta.de")
        msg["Date"] = format_datetime(datetime.now(timezone.utc))
        msg.set_content(text)
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        return msg

    def _send(self, recipients: List[str], subject: str, text: str, html_body: Optional[str] = None) -> bool:
        recipients = [address for address in recipients if address]
        if not recipients:
            logger.info("%s no recipients subject=%s", MAIL_PREFIX, subject)
            return False
        if not self.is_configured():
            logger.warning("%s smtp not configured; skipped subject=%s", MAIL_PREFIX, subject)
            return False

        message = self._build_message(recipients, subject, text, html_body)
        try:
            smtp = self._connect()
            try:
                smtp.send_message(message)
            finally:
                smtp.quit()
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning(
                "%s send failed host=%s port=%s subject=%s error=%s",
                MAIL_PREFIX,
                self.host,
                self.port,
                subject,
                exc,
            )
            return False

        logger.info("%s sent subject=%s recipients=%s", MAIL_PREFIX, subject, len(recipients))
        return True

    def send_deadline_notice(self, notice: TaskDeadlineNotice) -> bool:
        if not (self._flag("notifications_enabled") and self._flag("task_deadline_notifications")):
            logger.info("%s deadline notifications disabled", MAIL_PREFIX)
            return False

        urgency = _urgency_label(notice.days_until_due)
        due = notice.due_date.strftime("%d.%m.%Y")
        link = f"{self.base_url}/portal/tasks"
        lines = [
            f"{urgency}: {notice.task_title}",
            f"Beschreibung: {notice.task_description or 'Keine Beschreibung verfügbar'}",
            f"Fälligkeitsdatum: {due}",
            f"Zugewiesen an: {notice.assignee_name}",
            f"Projekt: {notice.project_name}" if notice.project_name else "",
            f"Kunde: {notice.customer_name}" if notice.customer_name else "",
            f"Besuchen Sie: {link}",
        ]
        text = "\n".join(line for line in lines if line)
        html_body = _html_page(
            f"{urgency}: {notice.task_title}",
            [html.escape(line) for line in lines[1:-1]],
            link,
            "Aufgabe anzeigen",
        )
        return self._send([notice.assignee_email], f"⚠️ Aufgabe fällig: {notice.task_title}", text, html_body)

    def send_ticket_change_notice(self, notice: TicketChangeNotice, change_summary: str) -> bool:
        if not (self._flag("notifications_enabled") and self._flag("ticket_notifications")):
            logger.info("%s ticket notifications disabled", MAIL_PREFIX)
            return False

        link = f"{self.base_url}/portal/tickets"
        lines = [
            f"Ticket aktualisiert: {notice.ticket_title}",
            f"Beschreibung: {notice.ticket_description or 'Keine Beschreibung verfügbar'}",
            f"Status: {STATUS_LABELS.get(notice.ticket_status, notice.ticket_status)}",
            f"Priorität: {PRIORITY_LABELS.get(notice.ticket_priority, notice.ticket_priority)}",
            f"Zugewiesen an: {notice.assignee_name}" if notice.assignee_name else "",
            f"Kunde: {notice.customer_name}" if notice.customer_name else "",
            f"Geändert von: {notice.changed_by}",
            f"Änderungsdetails: {change_summary}" if change_summary else "",
            f"Besuchen Sie: {link}",
        ]
        text = "\n".join(line for line in lines if line)
        html_body = _html_page(
            f"Ticket aktualisiert: {notice.ticket_title}",
            [html.escape(line) for line in lines[1:-1] if line],
            link,
            "Ticket anzeigen",
        )
        return self._send(
            [notice.assignee_email or "", notice.customer_email or ""],
            f"🎫 Ticket aktualisiert: {notice.ticket_title}",
            text,
            html_body,
        )

    def test_connection(self) -> bool:
        if not self.is_configured():
            return False
        try:
            smtp = self._connect()
            try:
                smtp.noop()
            finally:
                smtp.quit()
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("%s connection test failed host=%s error=%s", MAIL_PREFIX, self.host, exc)
            return False
        return True

    def send_test_email(self, to: str) -> bool:
        text = (
            "Dies ist eine Test-E-Mail des Servecta Portals.\n"
            f"SMTP-Server: {self.host}:{self.port}\n"
            f"Gesendet: {datetime.now(timezone.utc).isoformat(timespec='seconds')}"
        )
        return self._send([to], "Servecta Portal: Test-E-Mail", text)


def smtp_diagnostics(settings: Dict[str, Any]) -> Dict[str, Any]:
    service = EmailService(settings)
    return {
        "host": service.host,
        "port": service.port,
        "ssl": service.use_ssl,
        "from": service.sender,
        "configured": service.is_configured(),
    }
