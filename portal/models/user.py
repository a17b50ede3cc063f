from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String

from portal.core.database import Base

STAFF_ROLES = ("ADMIN", "MANAGER", "MITARBEITER")
CONSUMER_ROLE = "KUNDE"
USER_STATUSES = ("ACTIVE", "INACTIVE", "PENDING")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # STAFF or CONSUMER; consumers carry customer_id
    user_type = Column(String(20), nullable=False, default="STAFF", index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(150), nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String(20), nullable=False, default="MITARBEITER")
    status = Column(String(20), nullable=False, default="ACTIVE")
    phone = Column(String(50), nullable=True)
    departments = Column(JSON, nullable=False, default=list)
    customer_id = Column(Integer, nullable=True, index=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
