"""Admin maintenance on stored calls.

Deleting a call leaves a tombstone so later syncs do not import it again.
Resetting an account's calls moves its reset cursor, which also moves the
start of every later sync window.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from callsync.core.timeutil import isoformat_z, utcnow
from callsync.models import AccountBilling, CallRecord, DeletedCallTombstone
from callsync.schemas import DeleteCallResult, ResetCallsResult
from callsync.services.audit import log_event
from callsync.services.sync import get_account

logger = logging.getLogger(__name__)


class CallNotFoundError(LookupError):
    pass


def delete_call(db: Session, call_id: int, admin_id: Optional[int] = None) -> DeleteCallResult:
    call = db.get(CallRecord, call_id)
    if call is None:
        raise CallNotFoundError(f"Call {call_id} not found")
    account_id = call.account_id
    external_id = call.external_call_id
    exists = (
        db.query(DeletedCallTombstone.id)
        .filter(
            DeletedCallTombstone.account_id == account_id,
            DeletedCallTombstone.external_call_id == external_id,
        )
        .first()
    )
    if not exists:
        db.add(DeletedCallTombstone(account_id=account_id, external_call_id=external_id))
    db.delete(call)
    log_event(
        db,
        "delete_call",
        "success",
        account_id=admin_id,
        details={
            "call_id": call_id,
            "target_account_id": account_id,
            "external_call_id": external_id,
            "cost": str(call.cost),
            "duration": call.duration_seconds,
            "contact": call.contact_name,
            "started_at": isoformat_z(call.started_at),
        },
        commit=False,
    )
    db.commit()
    logger.info("Deleted call %s (%s) for account %s", call_id, external_id, account_id)
    return DeleteCallResult(call_id=call_id, external_call_id=external_id, tombstoned=True)


def reset_account_calls(
    db: Session,
    account_id: int,
    admin_id: Optional[int] = None,
    clock: Callable = utcnow,
) -> ResetCallsResult:
    get_account(db, account_id)
    reset_at = clock()
    deleted = (
        db.query(CallRecord)
        .filter(CallRecord.account_id == account_id)
        .delete(synchronize_session=False)
    )
    billing = db.query(AccountBilling).filter(AccountBilling.account_id == account_id).first()
    if billing is None:
        billing = AccountBilling(account_id=account_id)
        db.add(billing)
    billing.calls_reset_at = reset_at
    log_event(
        db,
        "reset_account_calls",
        "success",
        account_id=admin_id,
        details={"target_account_id": account_id, "deleted_calls": deleted},
        commit=False,
    )
    db.commit()
    logger.info("Reset %s calls for account %s at %s", deleted, account_id, reset_at)
    return ResetCallsResult(account_id=account_id, deleted_calls_count=deleted, calls_reset_at=reset_at)
