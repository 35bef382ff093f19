from typing import Literal, Optional

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from callsync.api.errors import http_error
from callsync.core.database import get_db
from callsync.core.deps import get_http_client, require_admin
from callsync.errors import CallSyncError
from callsync.models import Account
from callsync.schemas import DeleteCallResult, DiagnosticReport, DiagnosticRequest, ResetCallsResult
from callsync.services.call_admin import CallNotFoundError, delete_call, reset_account_calls
from callsync.services.diagnostics import run_diagnostic
from callsync.services.exports import missing_calls_to_csv, report_to_json
from callsync.services.sync import build_context

router = APIRouter(prefix="/admin", tags=["admin"])


async def _diagnose(
    account_id: int, payload: Optional[DiagnosticRequest], db: Session, http: httpx.AsyncClient
) -> DiagnosticReport:
    payload = payload or DiagnosticRequest()
    try:
        context = build_context(db, account_id, http)
        return await run_diagnostic(
            context, payload.start_date, payload.end_date, payload.include_raw_data
        )
    except CallSyncError as exc:
        raise http_error(exc) from exc


@router.post("/accounts/{account_id}/diagnostic", response_model=DiagnosticReport)
async def diagnostic(
    account_id: int,
    payload: Optional[DiagnosticRequest] = Body(default=None),
    db: Session = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http_client),
    admin: Account = Depends(require_admin),
):
    return await _diagnose(account_id, payload, db, http)


@router.post("/accounts/{account_id}/diagnostic/export")
async def diagnostic_export(
    account_id: int,
    payload: Optional[DiagnosticRequest] = Body(default=None),
    export_format: Literal["json", "csv"] = Query(default="json", alias="format"),
    db: Session = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http_client),
    admin: Account = Depends(require_admin),
):
    report = await _diagnose(account_id, payload, db, http)
    filename = f"diagnostic-{account_id}-run-{report.run_id}.{export_format}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if export_format == "csv":
        return Response(content=missing_calls_to_csv(report), media_type="text/csv", headers=headers)
    return Response(content=report_to_json(report), media_type="application/json", headers=headers)


@router.delete("/calls/{call_id}", response_model=DeleteCallResult)
def remove_call(call_id: int, db: Session = Depends(get_db), admin: Account = Depends(require_admin)):
    try:
        return delete_call(db, call_id, admin.id)
    except CallNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/accounts/{account_id}/reset-calls", response_model=ResetCallsResult)
def reset_calls(account_id: int, db: Session = Depends(get_db), admin: Account = Depends(require_admin)):
    try:
        return reset_account_calls(db, account_id, admin.id)
    except CallSyncError as exc:
        raise http_error(exc) from exc
