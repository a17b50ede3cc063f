from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from portal.core.database import Base

ADDRESS_TYPES = ("BUSINESS", "BILLING", "SHIPPING", "OTHER")


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    type = Column(String(20), nullable=False, default="BUSINESS")
    street = Column(String(200), nullable=False)
    city = Column(String(100), nullable=False)
    postal_code = Column(String(20), nullable=False)
    country = Column(String(100), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
