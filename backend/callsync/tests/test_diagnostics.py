import asyncio
from datetime import timedelta

import pytest

from callsync.errors import SyncFailedError
from callsync.models import CallRecord, SyncKind, SyncRun, SyncStatus
from callsync.services.call_admin import delete_call
from callsync.services.call_writer import CallWriter, map_call
from callsync.services.diagnostics import DiagnosticComparator, run_diagnostic
from callsync.services.sync import run_sync
from callsync.tests.factories import make_account, make_agent
from callsync.tests.fakes import MARCH, numbered_calls, provider_call


@pytest.fixture()
def diverged(db, provider, make_context):
    """Account whose stored calls drifted from the provider in every way a diagnostic reports."""
    account = make_account(db)
    make_agent(db, "agent-a", "Alice", assign_to=account)
    make_agent(db, "agent-b", "Bob")
    provider.calls = (
        numbered_calls("a", 5, "agent-a", MARCH)
        + numbered_calls("b", 3, "agent-b", MARCH + timedelta(days=1))
        + [
            provider_call("x-0", "agent-x", MARCH + timedelta(days=2)),
            provider_call("n-0", None, MARCH + timedelta(days=3)),
        ]
    )
    asyncio.run(run_sync(make_context(account.id)))
    delete_call(db, db.query(CallRecord).filter_by(external_call_id="a-0").one().id)
    CallWriter(db).persist(
        account.id, map_call(provider_call("local-only", "agent-a", MARCH + timedelta(days=5)))
    )
    provider.calls.append(provider_call("late", "agent-a", MARCH + timedelta(days=4)))
    return account


def test_report_counts(db, diverged, make_context):
    report = asyncio.run(run_diagnostic(make_context(diverged.id)))

    summary = report.summary
    assert summary.provider_total == 11
    assert summary.database_total == 5
    assert summary.matching == 4
    assert summary.missing_in_database == 7
    assert summary.extra_in_database == 1
    assert summary.missing_in_database == len(report.missing_calls)
    assert report.reason_breakdown == {
        "deleted_by_admin": 1,
        "filtering_or_sync_issue": 1,
        "agent_not_assigned_to_user": 3,
        "agent_not_in_system": 1,
        "no_agent_id_in_call": 1,
    }
    assert [(call.call_id, call.reason) for call in report.extra_calls] == [
        ("local-only", "not_in_provider_response")
    ]


def test_agent_status_per_missing_call(db, diverged, make_context):
    report = asyncio.run(run_diagnostic(make_context(diverged.id)))

    statuses = {call.call_id: call.agent_status for call in report.missing_calls}
    assert statuses == {
        "a-0": "deleted",
        "late": "assigned",
        "b-0": "not_assigned",
        "b-1": "not_assigned",
        "b-2": "not_assigned",
        "x-0": "not_found",
        "n-0": "missing",
    }


def test_agent_analysis_and_breakdown(db, diverged, make_context):
    report = asyncio.run(run_diagnostic(make_context(diverged.id)))

    analysis = report.agent_analysis
    assert analysis.total_agents_in_calls == 3
    assert analysis.assigned_to_account == 1
    unassigned = {agent.agent_external_id: agent for agent in analysis.unassigned_agents}
    assert set(unassigned) == {"agent-b", "agent-x"}
    assert unassigned["agent-b"].in_system and unassigned["agent-b"].occurrence_count == 3
    assert unassigned["agent-b"].name == "Bob"
    assert not unassigned["agent-x"].in_system
    assert unassigned["agent-x"].name == "Unknown"

    breakdown = {entry.agent_external_id: entry for entry in report.agent_breakdown}
    assert breakdown["agent-b"].occurrence_count == 3
    assert breakdown["agent-a"].occurrence_count == 2
    assert breakdown["agent-a"].is_assigned_locally
    assert not breakdown["agent-b"].is_assigned_locally


def test_attributed_reasons_match_a_real_sync(db, diverged, make_context):
    report = asyncio.run(run_diagnostic(make_context(diverged.id)))

    summary = asyncio.run(run_sync(make_context(diverged.id)))
    run = db.get(SyncRun, summary.run_id)
    sync_reasons = {item["callId"]: item["reason"] for item in run.sampled_skipped_items}
    stored = {row.external_call_id for row in db.query(CallRecord).filter_by(account_id=diverged.id)}

    for call in report.missing_calls:
        if call.reason == "filtering_or_sync_issue":
            assert call.call_id in stored
        else:
            assert sync_reasons[call.call_id] == call.reason


def test_diagnostic_is_read_only_and_logged(db, diverged, make_context):
    calls_before = db.query(CallRecord).count()

    report = asyncio.run(run_diagnostic(make_context(diverged.id), include_raw=True))

    assert db.query(CallRecord).count() == calls_before
    runs = db.query(SyncRun).filter_by(kind=SyncKind.DIAGNOSTIC).all()
    assert len(runs) == 1
    assert runs[0].id == report.run_id
    assert runs[0].status == SyncStatus.SUCCESS
    assert runs[0].processing_summary["missingInDatabase"] == 7
    assert len(report.raw_data["providerCalls"]) == 11
    assert len(report.raw_data["databaseCalls"]) == 5


def test_diagnostic_fetch_failure_is_recorded(db, provider, make_context):
    account = make_account(db)
    provider.fail_on_page = 1

    with pytest.raises(SyncFailedError):
        asyncio.run(run_diagnostic(make_context(account.id)))

    run = db.query(SyncRun).filter_by(kind=SyncKind.DIAGNOSTIC).one()
    assert run.status == SyncStatus.FAILED
    assert run.error_details["reason"] == "provider_fetch_failed"


def test_page_bound_makes_the_diagnostic_partial(db, provider, make_context):
    account = make_account(db)
    provider.endless = True

    report = asyncio.run(run_diagnostic(make_context(account.id, max_pages=2)))

    assert report.summary.page_limit_reached is True
    assert report.summary.pages_fetched == 2
    assert report.summary.provider_total == 200
    run = db.get(SyncRun, report.run_id)
    assert run.status == SyncStatus.PARTIAL
    assert run.error_details == {"reason": "page_limit_reached", "maxPages": 2}


def test_slow_diagnostic_times_out(db, provider, make_context):
    account = make_account(db)
    provider.page_delay = 0.5

    with pytest.raises(SyncFailedError):
        asyncio.run(run_diagnostic(make_context(account.id, sync_run_timeout_seconds=0.05)))

    run = db.query(SyncRun).filter_by(kind=SyncKind.DIAGNOSTIC).one()
    assert run.status == SyncStatus.FAILED
    assert run.error_details["reason"] == "timeout"


def test_unexpected_error_still_completes_the_diagnostic(db, provider, make_context, monkeypatch):
    account = make_account(db)

    def explode(self, window):
        raise RuntimeError("query planner exploded")

    monkeypatch.setattr(DiagnosticComparator, "_local_calls", explode)

    with pytest.raises(RuntimeError):
        asyncio.run(run_diagnostic(make_context(account.id)))

    run = db.query(SyncRun).filter_by(kind=SyncKind.DIAGNOSTIC).one()
    assert run.status == SyncStatus.FAILED
    assert run.completed_at is not None
    assert run.error_details["reason"] == "internal_error"


def test_every_record_without_an_id_is_reported(db, provider, make_context):
    account = make_account(db)
    make_agent(db, "agent-a", assign_to=account)
    nameless = [provider_call("tmp", started=MARCH + timedelta(minutes=index)) for index in range(3)]
    for call in nameless:
        del call["id"]
    provider.calls = nameless + [provider_call("with-id", started=MARCH + timedelta(hours=1))]

    report = asyncio.run(run_diagnostic(make_context(account.id)))

    assert report.summary.provider_total == 4
    assert report.summary.missing_in_database == 4
    assert report.reason_breakdown == {"missing_call_id": 3, "filtering_or_sync_issue": 1}
    assert [call.call_id for call in report.missing_calls if call.reason == "missing_call_id"] == [None] * 3
    assert all(call.agent_status == "assigned" for call in report.missing_calls)
