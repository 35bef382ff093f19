from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from callsync.core.database import Base
from callsync.core.timeutil import utcnow


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    external_agent_id = Column(String(128), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    assignments = relationship(
        "AgentAssignment", back_populates="agent", cascade="all, delete-orphan"
    )


class AgentAssignment(Base):
    __tablename__ = "agent_assignments"
    __table_args__ = (UniqueConstraint("account_id", "agent_id", name="uq_agent_assignment"),)

    id = Column(Integer, primary_key=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    agent = relationship("Agent", back_populates="assignments")
