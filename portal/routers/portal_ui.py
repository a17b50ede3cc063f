from __future__ import annotations

import html
from typing import List, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.deps import client_ip, require_role_ui
from portal.models.audit_log import AuditLog
from portal.models.customer import Customer
from portal.models.project import Project
from portal.models.task import CLOSED_TASK_STATUSES, Task
from portal.models.ticket import Ticket
from portal.models.user import User
from portal.routers.auth import authenticate, session_max_age
from portal.services.authorization_service import STAFF_ROLES
from portal.services.session import clear_session_cookie, create_session, set_session_cookie

router = APIRouter(tags=["portal"])

RECENT_AUDIT_ENTRIES = 10

_STYLE = """
    body {
      margin: 0;
      font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial;
      background: #f4f6fb;
      color: #1f2937;
    }
    header {
      padding: 16px 22px;
      background: #1e3a8a;
      color: #fff;
      display: flex;
      justify-content: space-between;
      align-items: center;
    }
    header a { color: #fff; }
    main { padding: 22px; max-width: 1100px; margin: 0 auto; }
    .card {
      background: #fff;
      border: 1px solid #e5e7eb;
      border-radius: 12px;
      padding: 18px;
      box-shadow: 0 4px 14px rgba(0,0,0,.05);
    }
    .grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(180px, 1fr)); gap: 14px; }
    .stat b { display: block; font-size: 26px; }
    .stat span { color: #6b7280; font-size: 13px; }
    table { width: 100%; border-collapse: collapse; font-size: 13px; }
    th, td { text-align: left; padding: 8px; border-bottom: 1px solid #e5e7eb; }
    label { display: block; font-size: 12px; color: #6b7280; margin: 12px 0 6px; }
    input {
      width: 100%;
      box-sizing: border-box;
      padding: 10px 12px;
      border: 1px solid #d1d5db;
      border-radius: 8px;
      font-size: 14px;
    }
    button {
      margin-top: 16px;
      width: 100%;
      padding: 10px 12px;
      border-radius: 8px;
      border: none;
      background: #1e3a8a;
      color: #fff;
      font-weight: 600;
      cursor: pointer;
    }
    .error {
      background: #fee2e2;
      border: 1px solid #fca5a5;
      color: #991b1b;
      padding: 8px 10px;
      border-radius: 8px;
      margin-top: 12px;
      font-size: 12px;
    }
"""


def _login_html(error: Optional[str] = None, email: str = "") -> str:
    error_html = f"<div class='error'>{html.escape(error)}</div>" if error else ""
    return f"""<!doctype html>
<html lang="de">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width,initial-scale=1" />
  <title>Servecta Portal Login</title>
  <style>{_STYLE}</style>
</head>
<body>
  <main style="max-width: 420px; padding-top: 12vh;">
    <div class="card">
      <h1 style="font-size: 20px; margin: 0 0 8px;">Servecta Portal</h1>
      <p style="color: #6b7280; font-size: 13px;">Melden Sie sich mit Ihrem Konto an.</p>
      <form method="post" action="/portal/login">
        <label for="email">E-Mail</label>
        <input id="email" name="email" type="email" required value="{html.escape(email)}" />

        <label for="password">Passwort</label>
        <input id="password" name="password" type="password" required />

        <button type="submit">Anmelden</button>
        {error_html}
      </form>
    </div>
  </main>
</body>
</html>"""


def _stat(label: str, value: int) -> str:
    return f"<div class='card stat'><b>{value}</b><span>{html.escape(label)}</span></div>"


def _audit_rows(entries: List[AuditLog]) -> str:
    if not entries:
        return "<tr><td colspan='4'>Keine Einträge</td></tr>"
    rows = []
    for entry in entries:
        timestamp = entry.timestamp.strftime("%d.%m.%Y %H:%M") if entry.timestamp else ""
        rows.append(
            "<tr>"
            f"<td>{timestamp}</td>"
            f"<td>{html.escape(entry.action or '')}</td>"
            f"<td>{html.escape(entry.entity_type or '')} {html.escape(entry.entity_id or '')}</td>"
            f"<td>{html.escape(entry.user_email or '-')}</td>"
            "</tr>"
        )
    return "".join(rows)


@router.get("/portal/login", response_class=HTMLResponse)
def portal_login_page():
    return HTMLResponse(_login_html())


@router.post("/portal/login")
def portal_login(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    try:
        user = authenticate(db, email=email, password=password, ip_address=client_ip(request))
    except HTTPException as exc:
        message = "Ungültige Anmeldedaten" if exc.status_code == 401 else "Zu viele Versuche. Bitte später erneut versuchen."
        return HTMLResponse(_login_html(message, email), status_code=exc.status_code)

    max_age = session_max_age(db)
    token = create_session({"user_id": user.id, "role": user.role}, max_age_seconds=max_age)
    response = RedirectResponse(url="/portal", status_code=303)
    set_session_cookie(response, token, request, max_age_seconds=max_age)
    return response


@router.get("/portal/logout")
def portal_logout(request: Request):
    response = RedirectResponse(url="/portal/login", status_code=303)
    clear_session_cookie(response, request)
    return response


@router.get("/portal", response_class=HTMLResponse)
def portal_overview(
    user: User = Depends(require_role_ui(STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    stats = "".join(
        [
            _stat("Kunden", db.query(Customer).count()),
            _stat("Projekte", db.query(Project).count()),
            _stat(
                "Offene Aufgaben",
                db.query(Task).filter(Task.status.notin_(CLOSED_TASK_STATUSES)).count(),
            ),
            _stat(
                "Offene Tickets",
                db.query(Ticket).filter(Ticket.status.in_(("OPEN", "IN_PROGRESS"))).count(),
            ),
        ]
    )
    entries = (
        db.query(AuditLog)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(RECENT_AUDIT_ENTRIES)
        .all()
    )
    page = f"""<!doctype html>
<html lang="de">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width,initial-scale=1" />
  <title>Servecta Portal</title>
  <style>{_STYLE}</style>
</head>
<body>
<header>
  <b>Servecta Portal</b>
  <span>{html.escape(user.name or user.email)} ({html.escape(user.role)}) · <a href="/portal/logout">Abmelden</a></span>
</header>
<main>
  <div class="grid">{stats}</div>
  <div class="card" style="margin-top: 18px;">
    <h3 style="margin-top: 0;">Letzte Aktivitäten</h3>
    <table>
      <thead><tr><th>Zeit</th><th>Aktion</th><th>Objekt</th><th>Benutzer</th></tr></thead>
      <tbody>{_audit_rows(entries)}</tbody>
    </table>
  </div>
</main>
</body>
</html>"""
    return HTMLResponse(page)
