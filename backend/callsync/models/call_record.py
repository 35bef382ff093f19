import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from callsync.core.database import Base
from callsync.core.timeutil import utcnow


class CallDirection(enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CallRecord(Base):
    __tablename__ = "calls"
    __table_args__ = (
        UniqueConstraint("account_id", "external_call_id", name="uq_calls_account_external"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    external_call_id = Column(String(128), nullable=False)
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    agent_external_id = Column(String(128), nullable=True)
    direction = Column(Enum(CallDirection), nullable=False)
    contact_name = Column(String(255), nullable=True)
    from_number = Column(String(64), nullable=True)
    to_number = Column(String(64), nullable=True)
    status = Column(String(64), nullable=True)
    duration_seconds = Column(Integer, default=0, nullable=False)
    cost = Column(Numeric(12, 4), default=0, nullable=False)
    started_at = Column(DateTime, nullable=False, index=True)
    ended_at = Column(DateTime, nullable=True)
    summary = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    recording_reference = Column(String(1024), nullable=True)
    message_id = Column(String(128), nullable=True)
    location_id = Column(String(128), nullable=True)
    is_test_call = Column(Boolean, default=False, nullable=False)
    tags = Column(JSON, default=list, nullable=False)
    raw_payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
