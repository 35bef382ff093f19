import asyncio

import httpx
from celery import shared_task
from sqlalchemy.orm import Session

from callsync.core.config import settings
from callsync.core.database import SessionLocal
from callsync.services.scheduler import purge_runs, refresh_expiring_tokens, sync_all_active_accounts


async def _sync_batch(batch: int | None, dry_run: bool, force: bool) -> dict:
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as http:
        report = await sync_all_active_accounts(SessionLocal, http, batch=batch, dry_run=dry_run, force=force)
    return report.as_dict()


async def _refresh_tokens() -> dict:
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as http:
        return await refresh_expiring_tokens(SessionLocal, http)


@shared_task(name="callsync.tasks.sync_account_batch", bind=True)
def sync_account_batch(self, batch: int | None = None, dry_run: bool = False, force: bool = False):
    return asyncio.run(_sync_batch(batch, dry_run, force))


@shared_task(name="callsync.tasks.refresh_tokens", bind=True, autoretry_for=(Exception,), retry_backoff=True, retry_kwargs={"max_retries": 3})
def refresh_tokens(self):
    return asyncio.run(_refresh_tokens())


@shared_task(name="callsync.tasks.purge_sync_runs", bind=True)
def purge_sync_runs(self):
    db: Session = SessionLocal()
    try:
        return purge_runs(db)
    finally:
        db.close()
