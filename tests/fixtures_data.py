"""Reusable records for backend test scenarios."""

ADMIN_PRINCIPAL = {
    "id": 1,
    "email": "admin@servecta.com",
    "name": "Admin",
    "role": "ADMIN",
    "user_type": "STAFF",
    "status": "ACTIVE",
    "customer_id": None,
    "departments": [],
}

MANAGER_PRINCIPAL = {
    "id": 2,
    "email": "manager@servecta.com",
    "name": "Manager",
    "role": "MANAGER",
    "user_type": "STAFF",
    "status": "ACTIVE",
    "customer_id": None,
    "departments": ["IT"],
}

EMPLOYEE_PRINCIPAL = {
    "id": 3,
    "email": "mitarbeiter@servecta.com",
    "name": "Mitarbeiter",
    "role": "MITARBEITER",
    "user_type": "STAFF",
    "status": "ACTIVE",
    "customer_id": None,
    "departments": ["IT"],
}

CONSUMER_PRINCIPAL = {
    "id": 4,
    "email": "kunde@acme.de",
    "name": "Kunde",
    "role": "KUNDE",
    "user_type": "CONSUMER",
    "status": "ACTIVE",
    "customer_id": 10,
    "departments": [],
}

CUSTOMER_ROW = {
    "id": 10,
    "legal_name": "ACME GmbH",
    "trade_name": "ACME",
    "status": "ACTIVE",
    "tags": [],
}

SMTP_SETTINGS = {
    "smtp_host": "smtp.example.com",
    "smtp_port": 587,
    "smtp_user": "mailer",
    "smtp_pass": "s3cret",
    "smtp_from": "portal@servecta.de",
    "smtp_secure": False,
    "notifications_enabled": True,
    "task_deadline_notifications": True,
    "ticket_notifications": True,
}
