import enum

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer

from callsync.core.database import Base
from callsync.core.timeutil import utcnow


class SyncKind(enum.Enum):
    MANUAL = "manual"
    AUTO = "auto"
    DIAGNOSTIC = "diagnostic"


class SyncStatus(enum.Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    kind = Column(Enum(SyncKind), nullable=False)
    status = Column(Enum(SyncStatus), nullable=False, default=SyncStatus.IN_PROGRESS)
    started_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    request_params = Column(JSON, default=dict, nullable=False)
    response_summary = Column(JSON, default=dict, nullable=False)
    processing_summary = Column(JSON, default=dict, nullable=False)
    sampled_skipped_items = Column(JSON, default=list, nullable=False)
    error_details = Column(JSON, nullable=True)
