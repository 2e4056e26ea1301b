from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime
from .database import Base

class Visit(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)
    source = Column(String, nullable=True)

    # Identification
    session_id = Column(String, index=True)
    ip_address = Column(String, index=True)

    # Projections used by the aggregate queries
    browser = Column(String, index=True)
    os = Column(String, index=True)
    device_type = Column(String, index=True)
    country = Column(String, nullable=True, index=True)

    # Full visitor record
    record = Column(JSON, default=dict)
