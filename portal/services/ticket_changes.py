from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from portal.services.email_service import EmailService, TicketChangeNotice

logger = logging.getLogger(__name__)

UNASSIGNED = "Nicht zugewiesen"


def summarize_ticket_changes(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    assignee_names: Optional[Mapping[Any, str]] = None,
) -> str:
    """Human readable summary of the fields that trigger a ticket notice."""
    names = assignee_names or {}
    changes = []
    if before.get("status") != after.get("status"):
        changes.append(f'Status geändert von "{before.get("status")}" zu "{after.get("status")}"')
    if before.get("priority") != after.get("priority"):
        changes.append(f'Priorität geändert von "{before.get("priority")}" zu "{after.get("priority")}"')
    if before.get("assignee_id") != after.get("assignee_id"):
        old_name = names.get(before.get("assignee_id")) or UNASSIGNED
        new_name = names.get(after.get("assignee_id")) or UNASSIGNED
        changes.append(f'Zuweisung geändert von "{old_name}" zu "{new_name}"')
    if before.get("description") != after.get("description"):
        changes.append("Beschreibung wurde aktualisiert")
    return ", ".join(changes)


def dispatch_ticket_notice(
    email_settings: Mapping[str, Any], notice: TicketChangeNotice, change_summary: str
) -> bool:
    """Background entry point; never raises into the response cycle."""
    try:
        return EmailService(email_settings).send_ticket_change_notice(notice, change_summary)
    except Exception:
        logger.exception("Ticket notice failed title=%s", notice.ticket_title)
        return False
