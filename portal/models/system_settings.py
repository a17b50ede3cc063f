from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String

from portal.core.database import Base


class SystemSettings(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(50), nullable=False, unique=True, default="system")
    general = Column(JSON, nullable=False, default=dict)
    email_settings = Column(JSON, nullable=False, default=dict)
    security = Column(JSON, nullable=False, default=dict)
    backup = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
