"""Append-only log of sync and diagnostic runs."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from callsync.core.timeutil import utcnow
from callsync.errors import RunAlreadyCompletedError
from callsync.models import SyncKind, SyncRun, SyncStatus

logger = logging.getLogger(__name__)


@dataclass
class RunCompletion:
    status: SyncStatus
    response_summary: Dict[str, Any] = field(default_factory=dict)
    processing_summary: Dict[str, Any] = field(default_factory=dict)
    sampled_skipped_items: List[Dict[str, Any]] = field(default_factory=list)
    error_details: Optional[Dict[str, Any]] = None


class RunLogStore:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock

    def create(
        self, account_id: int, kind: SyncKind, request_params: Optional[Dict[str, Any]] = None
    ) -> int:
        run = SyncRun(
            account_id=account_id,
            kind=kind,
            status=SyncStatus.IN_PROGRESS,
            started_at=self.clock(),
            request_params=request_params or {},
            response_summary={},
            processing_summary={},
            sampled_skipped_items=[],
        )
        self.db.add(run)
        self.db.commit()
        logger.info(
            "Started %s run %s for account %s",
            kind.value,
            run.id,
            account_id,
            extra={"account_id": account_id, "run_id": run.id, "kind": kind.value},
        )
        return run.id

    def get(self, run_id: int) -> Optional[SyncRun]:
        return self.db.get(SyncRun, run_id)

    def complete(self, run_id: int, completion: RunCompletion) -> SyncRun:
        if completion.status == SyncStatus.IN_PROGRESS:
            raise ValueError("A completed run needs a terminal status")
        run = self.db.get(SyncRun, run_id)
        if run is None:
            raise LookupError(f"Sync run {run_id} not found")
        if run.status != SyncStatus.IN_PROGRESS:
            raise RunAlreadyCompletedError(f"Sync run {run_id} is already {run.status.value}")
        completed_at = self.clock()
        run.status = completion.status
        run.completed_at = completed_at
        run.duration_ms = int((completed_at - run.started_at).total_seconds() * 1000)
        run.response_summary = completion.response_summary
        run.processing_summary = completion.processing_summary
        run.sampled_skipped_items = completion.sampled_skipped_items
        run.error_details = completion.error_details
        self.db.commit()
        self.db.refresh(run)
        logger.info(
            "Run %s for account %s finished with status %s in %sms",
            run.id,
            run.account_id,
            run.status.value,
            run.duration_ms,
            extra={"account_id": run.account_id, "run_id": run.id, "duration_ms": run.duration_ms},
        )
        return run

    def list(self, account_id: int, limit: int = 20) -> List[SyncRun]:
        return (
            self.db.query(SyncRun)
            .filter(SyncRun.account_id == account_id)
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
            .limit(limit)
            .all()
        )

    def purge_older_than(self, retention_days: int) -> int:
        cutoff = self.clock() - timedelta(days=retention_days)
        deleted = (
            self.db.query(SyncRun)
            .filter(SyncRun.started_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Purged %s sync runs older than %s days", deleted, retention_days)
        return deleted
