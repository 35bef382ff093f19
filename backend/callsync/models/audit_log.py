from sqlalchemy import JSON, Column, DateTime, Integer, String

from callsync.core.database import Base
from callsync.core.timeutil import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer)
    action = Column(String(120), nullable=False)
    status = Column(String(20), nullable=False)
    message = Column(String(255))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
