"""Scheduled work: staggered auto syncs, token refresh and run-log retention."""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from callsync.core.config import Settings, settings as default_settings
from callsync.core.timeutil import utcnow
from callsync.errors import CallSyncError, SyncFailedError, SyncInProgressError
from callsync.models import Account, ProviderCredential, Role, SyncKind, SyncRun, SyncStatus
from callsync.services.locks import AccountLocks, account_locks
from callsync.services.run_log import RunLogStore
from callsync.services.sync import SyncContext, build_provider, recently_synced, run_sync
from callsync.services.tokens import TokenManager

logger = logging.getLogger(__name__)


def stable_hash(value: str) -> int:
    """31-based string hash folded to a signed 32-bit int, absolute value."""
    result = 0
    for char in value:
        result = ((result << 5) - result + ord(char)) & 0xFFFFFFFF
    if result >= 0x80000000:
        result -= 0x100000000
    return abs(result)


def account_batch(account_id: int, batches: int) -> int:
    return stable_hash(str(account_id)) % batches + 1


def consecutive_failures(db: Session, account_id: int, limit: int) -> int:
    """Failed auto runs in a row, counted back from the latest one."""
    statuses = (
        db.query(SyncRun.status)
        .filter(
            SyncRun.account_id == account_id,
            SyncRun.kind == SyncKind.AUTO,
            SyncRun.status != SyncStatus.IN_PROGRESS,
        )
        .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
        .limit(limit)
        .all()
    )
    count = 0
    for (status,) in statuses:
        if status != SyncStatus.FAILED:
            break
        count += 1
    return count


def eligible_accounts(db: Session) -> List[int]:
    rows = (
        db.query(Account.id)
        .join(ProviderCredential, ProviderCredential.account_id == Account.id)
        .filter(
            Account.is_active.is_(True),
            Account.role == Role.CLIENT,
            ProviderCredential.is_active.is_(True),
        )
        .order_by(Account.id)
        .all()
    )
    return [account_id for (account_id,) in rows]


@dataclass
class BatchReport:
    batch: Optional[int]
    dry_run: bool
    total_eligible: int = 0
    batch_size: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "batch": self.batch,
            "dryRun": self.dry_run,
            "totalEligible": self.total_eligible,
            "batchSize": self.batch_size,
            "usersProcessed": len(self.results),
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "skippedCount": len(self.skipped),
            "skipped": self.skipped,
            "results": self.results,
        }


async def sync_all_active_accounts(
    db_factory: Callable[[], Session],
    http: httpx.AsyncClient,
    batch: Optional[int] = None,
    dry_run: bool = False,
    force: bool = False,
    config: Settings = default_settings,
    locks: AccountLocks = account_locks,
    clock: Callable[[], datetime] = utcnow,
) -> BatchReport:
    """Auto-sync every eligible account in ``batch`` (all batches when None)."""
    report = BatchReport(batch=batch, dry_run=dry_run)
    db = db_factory()
    try:
        eligible = eligible_accounts(db)
        report.total_eligible = len(eligible)
        selected = [
            account_id
            for account_id in eligible
            if batch is None or account_batch(account_id, config.auto_sync_batches) == batch
        ]
        report.batch_size = len(selected)
        to_sync: List[int] = []
        for account_id in selected:
            if not force:
                failures = consecutive_failures(db, account_id, config.max_consecutive_failures)
                if failures >= config.max_consecutive_failures:
                    logger.warning(
                        "Skipping account %s after %s consecutive failed auto syncs",
                        account_id,
                        failures,
                    )
                    report.skipped.append(
                        {"accountId": account_id, "reason": "consecutive_failures", "failureCount": failures}
                    )
                    continue
                window = timedelta(minutes=config.auto_sync_min_interval_minutes)
                if recently_synced(db, account_id, window, now=clock()):
                    report.skipped.append({"accountId": account_id, "reason": "recently_synced"})
                    continue
            to_sync.append(account_id)
    finally:
        db.close()

    logger.info(
        "Auto sync batch %s: %s of %s eligible accounts selected, %s to sync",
        batch,
        report.batch_size,
        report.total_eligible,
        len(to_sync),
    )
    if dry_run:
        report.results = [{"accountId": account_id, "status": "dry_run"} for account_id in to_sync]
        return report

    semaphore = asyncio.Semaphore(max(1, config.sync_concurrency))

    async def sync_one(account_id: int) -> Dict[str, Any]:
        async with semaphore:
            session = db_factory()
            try:
                context = SyncContext(
                    account_id=account_id,
                    db=session,
                    provider=build_provider(session, http, config),
                    config=config,
                    locks=locks,
                    clock=clock,
                )
                summary = await run_sync(context, SyncKind.AUTO)
                return {"accountId": account_id, "status": summary.status.value, "runId": summary.run_id}
            except SyncInProgressError:
                return {"accountId": account_id, "status": "in_progress"}
            except SyncFailedError as exc:
                return {
                    "accountId": account_id,
                    "status": "failed",
                    "runId": exc.summary.run_id if exc.summary else None,
                    "error": str(exc),
                }
            except CallSyncError as exc:
                logger.error("Auto sync for account %s failed: %s", account_id, exc)
                return {"accountId": account_id, "status": "failed", "error": str(exc)}
            except Exception as exc:
                # The run itself is already marked failed; keep the batch going.
                logger.exception("Auto sync for account %s crashed", account_id)
                return {
                    "accountId": account_id,
                    "status": "failed",
                    "error": f"{type(exc).__name__}: {exc}",
                }
            finally:
                session.close()

    report.results = list(await asyncio.gather(*(sync_one(account_id) for account_id in to_sync)))
    for result in report.results:
        if result["status"] in (SyncStatus.SUCCESS.value, SyncStatus.PARTIAL.value):
            report.success_count += 1
        elif result["status"] == "failed":
            report.failure_count += 1
    logger.info(
        "Auto sync batch %s done: %s succeeded, %s failed, %s skipped",
        batch,
        report.success_count,
        report.failure_count,
        len(report.skipped),
    )
    return report


async def refresh_expiring_tokens(
    db_factory: Callable[[], Session],
    http: httpx.AsyncClient,
    config: Settings = default_settings,
    clock: Callable[[], datetime] = utcnow,
) -> Dict[str, int]:
    horizon = clock() + timedelta(minutes=config.token_refresh_lookahead_minutes)
    counts = {"refreshed": 0, "failed": 0}
    db = db_factory()
    try:
        credentials = (
            db.query(ProviderCredential)
            .filter(
                ProviderCredential.is_active.is_(True),
                ProviderCredential.token_expires_at <= horizon,
            )
            .all()
        )
        manager = TokenManager(db, http, config, clock=clock)
        for credential in credentials:
            try:
                await manager.refresh(credential, force=True)
                counts["refreshed"] += 1
            except CallSyncError as exc:
                logger.error("Token refresh for account %s failed: %s", credential.account_id, exc)
                counts["failed"] += 1
    finally:
        db.close()
    return counts


def purge_runs(db: Session, config: Settings = default_settings) -> int:
    return RunLogStore(db).purge_older_than(config.run_retention_days)
