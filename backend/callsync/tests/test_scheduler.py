import asyncio
from datetime import datetime, timedelta

import pytest

from callsync.models import ProviderCredential, Role, SyncKind, SyncRun, SyncStatus
from callsync.services import scheduler
from callsync.services.run_log import RunCompletion, RunLogStore
from callsync.services.scheduler import (
    account_batch,
    consecutive_failures,
    eligible_accounts,
    purge_runs,
    refresh_expiring_tokens,
    stable_hash,
    sync_all_active_accounts,
)
from callsync.tests.factories import make_account, make_agent, make_credential
from callsync.tests.fakes import MARCH, numbered_calls


@pytest.fixture()
def scheduler_config(config):
    return config.model_copy(update={"sync_concurrency": 1})


@pytest.fixture()
def accounts(db, provider):
    first = make_account(db, "first")
    second = make_account(db, "second")
    make_account(db, "admin", role=Role.ADMIN)
    make_account(db, "disabled", is_active=False)
    make_account(db, "unlinked", with_credential=False)
    make_agent(db, "agent-a", assign_to=first)
    provider.calls = numbered_calls("c", 3, "agent-a", MARCH)
    return first, second


def add_runs(db, account_id, statuses, kind=SyncKind.AUTO):
    clock_start = datetime(2025, 1, 1)
    for index, status in enumerate(statuses):
        store = RunLogStore(db, lambda index=index: clock_start + timedelta(hours=index))
        run_id = store.create(account_id, kind)
        store.complete(run_id, RunCompletion(status=status))


def test_batches_follow_the_string_hash():
    assert stable_hash("1") == 49
    assert account_batch(1, 4) == 2
    assert account_batch(4, 4) == 1
    assert account_batch(10, 4) == 4
    assert 0 <= stable_hash("x" * 200) < 2 ** 31


def test_only_active_client_accounts_with_credentials_are_eligible(db, accounts):
    first, second = accounts
    assert eligible_accounts(db) == [first.id, second.id]

    credential = db.query(ProviderCredential).filter_by(account_id=second.id).one()
    credential.is_active = False
    db.commit()
    assert eligible_accounts(db) == [first.id]


def test_consecutive_failures_counts_from_latest_run(db, accounts):
    first, second = accounts
    add_runs(db, first.id, [SyncStatus.FAILED, SyncStatus.SUCCESS, SyncStatus.FAILED, SyncStatus.FAILED])
    add_runs(db, second.id, [SyncStatus.FAILED])
    add_runs(db, second.id, [SyncStatus.FAILED, SyncStatus.FAILED], kind=SyncKind.MANUAL)

    assert consecutive_failures(db, first.id, 3) == 2
    assert consecutive_failures(db, second.id, 3) == 1


def test_dry_run_lists_accounts_without_syncing(db, session_factory, http, scheduler_config, accounts, locks):
    report = asyncio.run(
        sync_all_active_accounts(session_factory, http, dry_run=True, config=scheduler_config, locks=locks)
    )

    assert report.total_eligible == 2
    assert [result["status"] for result in report.results] == ["dry_run", "dry_run"]
    assert db.query(SyncRun).count() == 0


def test_auto_sync_runs_each_account_then_throttles(db, session_factory, http, scheduler_config, accounts, locks):
    first, second = accounts

    report = asyncio.run(sync_all_active_accounts(session_factory, http, config=scheduler_config, locks=locks))

    assert report.success_count == 2
    assert {result["accountId"] for result in report.results} == {first.id, second.id}
    assert db.query(SyncRun).filter_by(kind=SyncKind.AUTO).count() == 2

    again = asyncio.run(sync_all_active_accounts(session_factory, http, config=scheduler_config, locks=locks))
    assert again.results == []
    assert {item["reason"] for item in again.skipped} == {"recently_synced"}

    forced = asyncio.run(
        sync_all_active_accounts(session_factory, http, force=True, config=scheduler_config, locks=locks)
    )
    assert forced.success_count == 2


def test_repeatedly_failing_account_is_skipped_unless_forced(db, session_factory, http, scheduler_config, accounts, locks):
    first, second = accounts
    add_runs(db, second.id, [SyncStatus.FAILED] * 3)

    report = asyncio.run(sync_all_active_accounts(session_factory, http, config=scheduler_config, locks=locks))

    assert [result["accountId"] for result in report.results] == [first.id]
    assert report.skipped == [{"accountId": second.id, "reason": "consecutive_failures", "failureCount": 3}]

    forced = asyncio.run(
        sync_all_active_accounts(session_factory, http, force=True, config=scheduler_config, locks=locks)
    )
    assert {result["accountId"] for result in forced.results} == {first.id, second.id}


def test_failed_account_is_reported_not_raised(db, session_factory, http, provider, scheduler_config, accounts, locks):
    provider.fail_on_page = 1

    report = asyncio.run(sync_all_active_accounts(session_factory, http, config=scheduler_config, locks=locks))

    assert report.failure_count == 1
    assert report.success_count == 1
    failed = [result for result in report.results if result["status"] == "failed"]
    assert failed[0]["runId"] is not None


def test_batch_selects_matching_accounts(db, session_factory, http, scheduler_config, accounts, locks):
    first, second = accounts
    batch = account_batch(first.id, scheduler_config.auto_sync_batches)

    report = asyncio.run(
        sync_all_active_accounts(session_factory, http, batch=batch, dry_run=True, config=scheduler_config, locks=locks)
    )

    expected = [
        account.id
        for account in (first, second)
        if account_batch(account.id, scheduler_config.auto_sync_batches) == batch
    ]
    assert [result["accountId"] for result in report.results] == expected


def test_only_soon_expiring_tokens_are_refreshed(db, session_factory, http, provider, config):
    soon = make_account(db, "soon", with_credential=False)
    make_credential(db, soon, expires_in=timedelta(minutes=30))
    make_account(db, "later")

    counts = asyncio.run(refresh_expiring_tokens(session_factory, http, config))

    assert counts == {"refreshed": 1, "failed": 0}
    assert len(provider.token_requests) == 1
    db.expire_all()
    assert db.query(ProviderCredential).filter_by(account_id=soon.id).one().access_token == "access-1"


def test_purge_uses_configured_retention(db, config):
    account = make_account(db)
    add_runs(db, account.id, [SyncStatus.SUCCESS])

    assert purge_runs(db, config.model_copy(update={"run_retention_days": 30})) == 1


def test_crash_in_one_account_does_not_abort_the_batch(db, session_factory, http, scheduler_config, accounts, locks, monkeypatch):
    first, second = accounts
    real_run_sync = scheduler.run_sync

    async def crashing_run_sync(context, kind):
        if context.account_id == second.id:
            raise RuntimeError("connection reset")
        return await real_run_sync(context, kind)

    monkeypatch.setattr(scheduler, "run_sync", crashing_run_sync)

    report = asyncio.run(sync_all_active_accounts(session_factory, http, config=scheduler_config, locks=locks))

    results = {result["accountId"]: result for result in report.results}
    assert results[first.id]["status"] == "success"
    assert results[second.id] == {
        "accountId": second.id,
        "status": "failed",
        "error": "RuntimeError: connection reset",
    }
    assert report.success_count == 1
    assert report.failure_count == 1
