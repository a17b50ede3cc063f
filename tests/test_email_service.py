import smtplib
from datetime import datetime
from unittest.mock import patch

from portal.services.email_service import EmailService, TaskDeadlineNotice, TicketChangeNotice, smtp_diagnostics
from portal.services.ticket_changes import dispatch_ticket_notice, summarize_ticket_changes
from tests.fixtures_data import SMTP_SETTINGS


def _deadline_notice(days=1):
    return TaskDeadlineNotice(
        task_title="Relaunch",
        due_date=datetime(2026, 3, 3, 12, 0, 0),
        assignee_name="Mitarbeiter",
        assignee_email="mitarbeiter@servecta.com",
        days_until_due=days,
        project_name="Website",
    )


def _ticket_notice():
    return TicketChangeNotice(
        ticket_title="Drucker defekt",
        ticket_status="IN_PROGRESS",
        ticket_priority="HIGH",
        changed_by="Manager",
        assignee_name="Mitarbeiter",
        assignee_email="mitarbeiter@servecta.com",
        customer_name="ACME GmbH",
        customer_email="kunde@acme.de",
    )


def test_deadline_notice_uses_starttls_and_login():
    service = EmailService(SMTP_SETTINGS)

    with patch("portal.services.email_service.smtplib.SMTP") as smtp_cls:
        smtp = smtp_cls.return_value
        smtp.has_extn.return_value = True
        assert service.send_deadline_notice(_deadline_notice()) is True

    smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=20)
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("mailer", "s3cret")
    message = smtp.send_message.call_args.args[0]
    assert message["Subject"] == "⚠️ Aufgabe fällig: Relaunch"
    assert message["To"] == "mitarbeiter@servecta.com"
    assert message["From"] == "portal@servecta.de"
    assert "MORGEN FÄLLIG" in message.get_body(("plain",)).get_content()
    smtp.quit.assert_called_once()


def test_port_465_uses_implicit_tls():
    service = EmailService({**SMTP_SETTINGS, "smtp_port": 465})

    with patch("portal.services.email_service.smtplib.SMTP_SSL") as ssl_cls:
        assert service.send_test_email("ops@servecta.de") is True

    assert ssl_cls.call_args.args == ("smtp.example.com", 465)
    assert ssl_cls.return_value.send_message.call_count == 1


def test_transport_errors_are_reported_as_false():
    service = EmailService(SMTP_SETTINGS)

    with patch("portal.services.email_service.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.has_extn.return_value = False
        smtp_cls.return_value.send_message.side_effect = smtplib.SMTPException("rejected")
        assert service.send_deadline_notice(_deadline_notice()) is False

    smtp_cls.return_value.quit.assert_called_once()


def test_unconfigured_service_does_not_connect():
    service = EmailService({"smtp_host": ""})

    with patch("portal.services.email_service.smtplib.SMTP") as smtp_cls:
        assert service.send_deadline_notice(_deadline_notice()) is False
        assert service.test_connection() is False

    smtp_cls.assert_not_called()


def test_disabled_ticket_notifications_skip_sending():
    service = EmailService({**SMTP_SETTINGS, "ticket_notifications": False})

    with patch("portal.services.email_service.smtplib.SMTP") as smtp_cls:
        assert service.send_ticket_change_notice(_ticket_notice(), "Status geändert") is False

    smtp_cls.assert_not_called()


def test_ticket_notice_goes_to_assignee_and_customer():
    with patch("portal.services.email_service.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.has_extn.return_value = False
        assert dispatch_ticket_notice(SMTP_SETTINGS, _ticket_notice(), 'Status geändert von "OPEN" zu "IN_PROGRESS"')

    message = smtp_cls.return_value.send_message.call_args.args[0]
    assert message["Subject"] == "🎫 Ticket aktualisiert: Drucker defekt"
    assert message["To"] == "mitarbeiter@servecta.com, kunde@acme.de"
    body = message.get_body(("plain",)).get_content()
    assert "Status: In Bearbeitung" in body
    assert "Priorität: Hoch" in body


def test_dispatch_swallows_unexpected_errors():
    with patch("portal.services.ticket_changes.EmailService", side_effect=RuntimeError("boom")):
        assert dispatch_ticket_notice(SMTP_SETTINGS, _ticket_notice(), "x") is False


def test_summarize_ticket_changes_lists_relevant_fields():
    before = {"status": "OPEN", "priority": "LOW", "assignee_id": None, "description": "a", "title": "t"}
    after = {"status": "RESOLVED", "priority": "LOW", "assignee_id": 3, "description": "b", "title": "t2"}

    summary = summarize_ticket_changes(before, after, {3: "Mitarbeiter"})

    assert summary == (
        'Status geändert von "OPEN" zu "RESOLVED", '
        'Zuweisung geändert von "Nicht zugewiesen" zu "Mitarbeiter", '
        "Beschreibung wurde aktualisiert"
    )
    assert summarize_ticket_changes(before, {**before, "title": "only title"}) == ""


def test_smtp_diagnostics_hide_credentials():
    diagnostics = smtp_diagnostics(SMTP_SETTINGS)

    assert diagnostics == {
        "host": "smtp.example.com",
        "port": 587,
        "ssl": False,
        "from": "portal@servecta.de",
        "configured": True,
    }
