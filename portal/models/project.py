from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text

from portal.core.database import Base

PROJECT_STATUSES = ("PLANNING", "ACTIVE", "ON_HOLD", "COMPLETED", "CANCELLED")
DEPARTMENTS = ("IT", "DATENSCHUTZ")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    code = Column(String(50), nullable=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="PLANNING", index=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    assignee_id = Column(Integer, nullable=True, index=True)
    budget = Column(Float, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    departments = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
