from typing import List, Optional

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from callsync.api.errors import http_error
from callsync.core.database import get_db
from callsync.core.deps import get_http_client, require_account_access, require_admin
from callsync.errors import CallSyncError
from callsync.models import Account, SyncKind, SyncRun
from callsync.schemas import DateRangeRequest, SyncRunOut, SyncRunSummary
from callsync.services.exports import run_to_json
from callsync.services.sync import build_context, get_account, list_recent_runs, run_sync

router = APIRouter(tags=["sync"])


@router.post("/accounts/{account_id}/sync", response_model=SyncRunSummary)
async def trigger_sync(
    account_id: int,
    payload: Optional[DateRangeRequest] = Body(default=None),
    db: Session = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http_client),
    account: Account = Depends(require_account_access),
):
    payload = payload or DateRangeRequest()
    try:
        context = build_context(db, account_id, http)
        return await run_sync(context, SyncKind.MANUAL, payload.start_date, payload.end_date)
    except CallSyncError as exc:
        raise http_error(exc) from exc


@router.get("/accounts/{account_id}/sync-runs", response_model=List[SyncRunOut])
def sync_runs(
    account_id: int,
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    account: Account = Depends(require_account_access),
):
    try:
        get_account(db, account_id)
    except CallSyncError as exc:
        raise http_error(exc) from exc
    return list_recent_runs(db, account_id, limit)


@router.get("/sync-runs/{run_id}/export.json")
def export_run(run_id: int, db: Session = Depends(get_db), admin: Account = Depends(require_admin)):
    run = db.get(SyncRun, run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Sync run not found")
    return Response(
        content=run_to_json(run),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="sync-run-{run_id}.json"'},
    )
