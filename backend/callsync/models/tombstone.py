from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from callsync.core.database import Base
from callsync.core.timeutil import utcnow


class DeletedCallTombstone(Base):
    __tablename__ = "deleted_call_tombstones"
    __table_args__ = (
        UniqueConstraint("account_id", "external_call_id", name="uq_tombstone_account_external"),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    external_call_id = Column(String(128), nullable=False)
    deleted_at = Column(DateTime, default=utcnow, nullable=False)
