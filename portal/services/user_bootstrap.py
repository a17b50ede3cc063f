from __future__ import annotations

from datetime import datetime

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from portal.models.user import User
from portal.services.passwords import hash_password, looks_hashed


def ensure_users_table(engine: Engine) -> None:
    inspector = inspect(engine)
    if not inspector.has_table("users"):
        raise RuntimeError("Table users not found. Run `alembic upgrade head` first.")


def upsert_staff_user(
    db: Session,
    *,
    email: str,
    name: str,
    role: str,
    password: str | None,
) -> tuple[User, bool]:
    email = email.strip().lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        existing.name = name
        existing.role = role
        existing.status = "ACTIVE"
        if password:
            existing.password_hash = password if looks_hashed(password) else hash_password(password)
        db.commit()
        db.refresh(existing)
        return existing, False

    if not password:
        raise ValueError("A password is required to create a new user.")

    user = User(
        user_type="STAFF",
        email=email,
        name=name,
        password_hash=password if looks_hashed(password) else hash_password(password),
        role=role,
        status="ACTIVE",
        departments=[],
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user, True
