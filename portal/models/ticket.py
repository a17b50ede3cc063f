from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from portal.core.database import Base

TICKET_STATUSES = ("OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED", "CANCELLED")
TICKET_TYPES = ("BUG", "FEATURE", "SUPPORT", "TASK")


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="OPEN", index=True)
    priority = Column(String(20), nullable=False, default="MEDIUM")
    type = Column(String(20), nullable=False, default="SUPPORT")
    assignee_id = Column(Integer, nullable=True, index=True)
    reporter_id = Column(Integer, nullable=True)
    customer_id = Column(Integer, nullable=True, index=True)
    project_id = Column(Integer, nullable=True, index=True)
    due_date = Column(DateTime, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    departments = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
