from sqlalchemy import Column, DateTime, ForeignKey, Integer

from callsync.core.database import Base
from callsync.core.timeutil import utcnow


class AccountBilling(Base):
    __tablename__ = "account_billing"

    id = Column(Integer, primary_key=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    # Start of the currently billed period; syncs never fetch before it.
    calls_reset_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
