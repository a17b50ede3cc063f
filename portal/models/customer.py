from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from portal.core.database import Base

CUSTOMER_STATUSES = ("ACTIVE", "INACTIVE", "SUSPENDED")
CUSTOMER_SIZES = ("STARTUP", "SME", "ENTERPRISE")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    legal_name = Column(String(200), nullable=False)
    trade_name = Column(String(200), nullable=True)
    vat_id = Column(String(50), nullable=True)
    industry = Column(String(100), nullable=True)
    size = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE", index=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
