import asyncio
import json
from datetime import datetime
from typing import Optional

import httpx
import typer
from sqlalchemy.orm import Session

from callsync.core.config import settings
from callsync.core.database import SessionLocal
from callsync.core.logging import setup_logging
from callsync.core.security import hash_password
from callsync.errors import CallSyncError, SyncFailedError
from callsync.models import Account, Role, SyncKind
from callsync.services.diagnostics import run_diagnostic
from callsync.services.exports import missing_calls_to_csv, report_to_json
from callsync.services.run_log import RunLogStore
from callsync.services.sync import build_context, run_sync

app = typer.Typer()


@app.callback()
def main(log_level: str = typer.Option(None, help="Override LOG_LEVEL")):
    setup_logging(log_level)


@app.command()
def create_admin(username: str = "admin", password: str = "admin"):
    db: Session = SessionLocal()
    try:
        existing = db.query(Account).filter(Account.username == username).first()
        if existing:
            typer.echo("Admin already exists")
            return
        db.add(Account(username=username, password_hash=hash_password(password), role=Role.ADMIN))
        db.commit()
        typer.echo("Admin created")
    finally:
        db.close()


async def _sync(account_id: int, start: Optional[datetime], end: Optional[datetime]):
    db: Session = SessionLocal()
    try:
        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as http:
            return await run_sync(build_context(db, account_id, http), SyncKind.MANUAL, start, end)
    finally:
        db.close()


@app.command()
def sync(
    account_id: int,
    start: Optional[datetime] = typer.Option(None, help="Window start (ISO 8601)"),
    end: Optional[datetime] = typer.Option(None, help="Window end (ISO 8601)"),
):
    """Run a manual sync for one account and print its summary."""
    try:
        summary = asyncio.run(_sync(account_id, start, end))
    except SyncFailedError as exc:
        if exc.summary is not None:
            typer.echo(exc.summary.model_dump_json(by_alias=True, indent=2))
        typer.echo(f"Sync failed: {exc}", err=True)
        raise typer.Exit(code=1)
    except CallSyncError as exc:
        typer.echo(f"Sync not started: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(summary.model_dump_json(by_alias=True, indent=2))


async def _diagnose(account_id: int, start: Optional[datetime], end: Optional[datetime], include_raw: bool):
    db: Session = SessionLocal()
    try:
        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as http:
            return await run_diagnostic(build_context(db, account_id, http), start, end, include_raw)
    finally:
        db.close()


@app.command()
def diagnose(
    account_id: int,
    start: Optional[datetime] = typer.Option(None),
    end: Optional[datetime] = typer.Option(None),
    include_raw: bool = typer.Option(False, "--include-raw"),
    output_format: str = typer.Option("json", "--format", help="json or csv"),
):
    """Compare provider calls with stored calls without writing any."""
    if output_format not in ("json", "csv"):
        raise typer.BadParameter("format must be json or csv")
    try:
        report = asyncio.run(_diagnose(account_id, start, end, include_raw))
    except CallSyncError as exc:
        typer.echo(f"Diagnostic failed: {exc}", err=True)
        raise typer.Exit(code=1)
    if output_format == "csv":
        typer.echo(missing_calls_to_csv(report), nl=False)
    else:
        typer.echo(report_to_json(report))


@app.command()
def purge_runs(days: int = typer.Option(None, help="Retention in days")):
    db: Session = SessionLocal()
    try:
        deleted = RunLogStore(db).purge_older_than(days or settings.run_retention_days)
    finally:
        db.close()
    typer.echo(json.dumps({"deleted": deleted}))


if __name__ == "__main__":
    app()
