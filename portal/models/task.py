from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from portal.core.database import Base

TASK_STATUSES = ("TODO", "IN_PROGRESS", "DONE", "COMPLETED", "CANCELLED")
TASK_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")
CLOSED_TASK_STATUSES = ("DONE", "COMPLETED", "CANCELLED")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="TODO", index=True)
    priority = Column(String(20), nullable=False, default="MEDIUM")
    type = Column(String(50), nullable=True)
    due_date = Column(DateTime, nullable=True, index=True)
    assignee_id = Column(Integer, nullable=True, index=True)
    reporter_id = Column(Integer, nullable=True)
    project_id = Column(Integer, nullable=True, index=True)
    customer_id = Column(Integer, nullable=True, index=True)
    # set only on subtasks; subtasks cannot have subtasks of their own
    parent_task_id = Column(Integer, nullable=True, index=True)
    departments = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
