from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from portal.core.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    # NULL means the notification is addressed to every user
    user_id = Column(Integer, nullable=True, index=True)
    type = Column(String(50), nullable=False, default="info")
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(500), nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
