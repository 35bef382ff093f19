"""Sync orchestrator.

One run walks the provider's pages in order, classifies every record against
the account's agent assignments, stores the accepted ones, and writes a single
``SyncRun`` describing what happened. Each run receives an explicit
``SyncContext``; nothing here keeps per-account state between runs.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from callsync.core.config import Settings, settings as default_settings
from callsync.core.timeutil import isoformat_z, to_naive_utc, utcnow
from callsync.errors import (
    AccountNotFoundError,
    CallSyncError,
    CredentialsMissingError,
    InternalSyncError,
    ProviderFetchError,
    RecordError,
    SyncFailedError,
    SyncTimeoutError,
)
from callsync.models import Account, AccountBilling, ProviderCredential, SyncKind, SyncRun, SyncStatus
from callsync.schemas import SyncRunSummary
from callsync.services.agent_filter import AgentDirectory, SkipReason, agent_id_of, refresh_seen_agents
from callsync.services.call_writer import CallWriter, PersistOutcome, map_call, optional_str
from callsync.services.locks import AccountLocks, account_locks
from callsync.services.provider_client import (
    DateRange,
    HighLevelClient,
    PageWalker,
    build_pagination,
    get_schema,
)
from callsync.services.run_log import RunCompletion, RunLogStore
from callsync.services.tokens import TokenManager

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 50


@dataclass
class SyncContext:
    account_id: int
    db: Session
    provider: HighLevelClient
    config: Settings = field(default_factory=lambda: default_settings)
    locks: AccountLocks = field(default_factory=lambda: account_locks)
    clock: Callable[[], datetime] = utcnow


def build_provider(db: Session, http: httpx.AsyncClient, config: Settings = default_settings) -> HighLevelClient:
    return HighLevelClient(
        http,
        TokenManager(db, http, config),
        base_url=config.provider_base_url,
        api_version=config.provider_api_version,
        pagination=build_pagination(config),
        schema=get_schema(config.provider_api_version),
    )


def build_context(
    db: Session, account_id: int, http: httpx.AsyncClient, config: Settings = default_settings
) -> SyncContext:
    return SyncContext(account_id=account_id, db=db, provider=build_provider(db, http, config), config=config)


def get_account(db: Session, account_id: int) -> Account:
    account = db.get(Account, account_id)
    if account is None:
        raise AccountNotFoundError(f"Account {account_id} not found")
    return account


def get_active_credential(db: Session, account_id: int) -> ProviderCredential:
    credential = (
        db.query(ProviderCredential)
        .filter(ProviderCredential.account_id == account_id, ProviderCredential.is_active.is_(True))
        .first()
    )
    if credential is None:
        raise CredentialsMissingError(f"Account {account_id} has no active provider connection")
    return credential


def resolve_window(
    db: Session,
    account: Account,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> DateRange:
    """Fetch window: ``[max(start, calls_reset_at), end]``.

    Without a requested start the reset cursor is used, then the account
    creation time.
    """
    end = to_naive_utc(end) if end else (now or utcnow())
    if start is not None:
        start = to_naive_utc(start)
    billing = db.query(AccountBilling).filter(AccountBilling.account_id == account.id).first()
    reset_at = billing.calls_reset_at if billing else None
    if start is None:
        start = reset_at or account.created_at
    elif reset_at and reset_at > start:
        start = reset_at
    return DateRange(start=start, end=end)


@dataclass
class RunAccumulator:
    sample_limit: int
    total_fetched: int = 0
    saved: int = 0
    errors: int = 0
    duplicates: int = 0
    reasons: Counter = field(default_factory=Counter)
    sampled: List[Dict[str, Any]] = field(default_factory=list)
    record_errors: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    page_log: List[Dict[str, Any]] = field(default_factory=list)
    limit_reached: bool = False
    page_failure: Optional[CallSyncError] = None
    seen_agents: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return sum(self.reasons.values())

    def skip(
        self,
        reason: SkipReason,
        call_id: Optional[str],
        agent_id: Optional[str] = None,
        started: Any = None,
    ) -> None:
        self.reasons[reason.value] += 1
        if reason == SkipReason.ALREADY_SYNCED:
            self.duplicates += 1
        if len(self.sampled) < self.sample_limit:
            self.sampled.append(
                {
                    "callId": call_id,
                    "agentId": agent_id,
                    "reason": reason.value,
                    "startedAt": started,
                }
            )

    def error(self, call_id: Optional[str], exc: Exception) -> None:
        self.errors += 1
        if len(self.record_errors) < MAX_RECORDED_ERRORS:
            self.record_errors.append({"callId": call_id, "error": str(exc)})

    def status(self, fatal: Optional[CallSyncError]) -> SyncStatus:
        if fatal is not None:
            return SyncStatus.FAILED
        if self.errors and self.errors == self.total_fetched:
            return SyncStatus.FAILED
        if self.limit_reached or self.page_failure is not None or self.errors:
            return SyncStatus.PARTIAL
        return SyncStatus.SUCCESS

    def completion(self, fatal: Optional[CallSyncError], max_pages: int) -> RunCompletion:
        error_details: Optional[Dict[str, Any]] = None
        if fatal is not None:
            error_details = fatal.to_details()
        elif self.page_failure is not None:
            error_details = self.page_failure.to_details()
            error_details["reason"] = "page_fetch_failed"
        elif self.limit_reached:
            error_details = {"reason": "page_limit_reached", "maxPages": max_pages}
        if self.record_errors:
            error_details = error_details or {"reason": "record_errors"}
            error_details["records"] = self.record_errors
        return RunCompletion(
            status=self.status(fatal),
            response_summary={
                "totalFetched": self.total_fetched,
                "pageCount": self.pages,
                "pageLimitReached": self.limit_reached,
                "pages": self.page_log,
            },
            processing_summary={
                "saved": self.saved,
                "skipped": self.skipped,
                "errors": self.errors,
                "duplicates": self.duplicates,
                "skipReasonHistogram": dict(self.reasons),
            },
            sampled_skipped_items=self.sampled,
            error_details=error_details,
        )


class SyncOrchestrator:
    def __init__(self, context: SyncContext) -> None:
        self.context = context
        self.db = context.db
        self.config = context.config
        self.schema = context.provider.schema
        self.store = RunLogStore(context.db, context.clock)
        self.writer = CallWriter(context.db)

    async def run(
        self,
        kind: SyncKind = SyncKind.MANUAL,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SyncRunSummary:
        if kind == SyncKind.DIAGNOSTIC:
            raise ValueError("Diagnostic runs go through DiagnosticComparator")
        async with self.context.locks.hold(self.context.account_id):
            return await self._run_locked(kind, start, end)

    async def _run_locked(
        self, kind: SyncKind, start: Optional[datetime], end: Optional[datetime]
    ) -> SyncRunSummary:
        account_id = self.context.account_id
        account = get_account(self.db, account_id)
        window = resolve_window(self.db, account, start, end, now=self.context.clock())
        run_id = self.store.create(
            account_id,
            kind,
            {
                "startDate": isoformat_z(window.start),
                "endDate": isoformat_z(window.end),
                "requestedStartDate": isoformat_z(start) if start else None,
                "requestedEndDate": isoformat_z(end) if end else None,
                "pagination": self.context.provider.pagination.name,
                "pageSize": self.config.provider_page_size,
                "maxPages": self.config.max_pages,
            },
        )
        acc = RunAccumulator(sample_limit=self.config.sample_skipped_limit)
        fatal: Optional[CallSyncError] = None
        try:
            await asyncio.wait_for(
                self._execute(acc, window), timeout=self.config.sync_run_timeout_seconds
            )
        except asyncio.TimeoutError:
            fatal = SyncTimeoutError(
                f"Sync exceeded {self.config.sync_run_timeout_seconds}s after {acc.pages} pages"
            )
        except CallSyncError as exc:
            fatal = exc
        except Exception as exc:
            logger.exception("Sync run %s for account %s crashed", run_id, account_id)
            self.db.rollback()
            self.store.complete(
                run_id, acc.completion(InternalSyncError(exc), self.config.max_pages)
            )
            raise
        if fatal is not None:
            logger.error("Sync run %s for account %s failed: %s", run_id, account_id, fatal)
        run = self.store.complete(run_id, acc.completion(fatal, self.config.max_pages))
        summary = SyncRunSummary.from_run(run)
        if run.status == SyncStatus.FAILED:
            raise SyncFailedError(str(fatal or "every fetched record failed"), summary, fatal)
        return summary

    async def _execute(self, acc: RunAccumulator, window: DateRange) -> None:
        account_id = self.context.account_id
        credential = get_active_credential(self.db, account_id)
        directory = AgentDirectory.load(self.db, account_id)
        walker = PageWalker(
            client=self.context.provider,
            credentials=credential,
            date_range=window,
            max_pages=self.config.max_pages,
            page_delay=self.config.provider_page_delay_seconds,
            account_id=account_id,
        )
        try:
            async for page in walker.pages():
                acc.pages = walker.pages_fetched
                acc.page_log = walker.page_log
                for raw in page.records:
                    self._process(acc, raw, directory, credential.location_id)
        except ProviderFetchError as exc:
            if walker.pages_fetched == 0:
                raise
            logger.warning(
                "Account %s: page %s failed, keeping %s processed records: %s",
                account_id,
                walker.pages_fetched + 1,
                acc.total_fetched,
                exc,
            )
            acc.page_failure = exc
        acc.pages = walker.pages_fetched
        acc.page_log = walker.page_log
        acc.limit_reached = walker.limit_reached
        refresh_seen_agents(self.db, acc.seen_agents, self.context.clock())

    def _process(
        self, acc: RunAccumulator, raw: Any, directory: AgentDirectory, location_id: Optional[str]
    ) -> None:
        acc.total_fetched += 1
        if not isinstance(raw, dict):
            acc.error(None, RecordError(f"Call entry is not an object: {type(raw).__name__}"))
            return
        call_id = raw.get(self.schema.id_field)
        call_id = str(call_id) if call_id not in (None, "") else None
        started = raw.get(self.schema.started_field)
        agent_id = agent_id_of(raw, self.schema)
        if agent_id is not None:
            name = optional_str(raw.get(self.schema.agent_name_field))
            if name and name.strip():
                acc.seen_agents[agent_id] = name.strip()
            else:
                acc.seen_agents.setdefault(agent_id, None)
        decision = directory.classify(raw, self.schema)
        if not decision.accepted:
            acc.skip(decision.reason, call_id, agent_id, started)
            return
        try:
            mapped = map_call(raw, self.schema, default_location_id=location_id)
            outcome = self.writer.persist(
                self.context.account_id, mapped, directory.local_id(mapped.agent_external_id)
            )
        except RecordError as exc:
            logger.warning("Account %s: call %s not stored: %s", self.context.account_id, call_id, exc)
            acc.error(call_id, exc)
            return
        if outcome == PersistOutcome.SAVED:
            acc.saved += 1
        elif outcome == PersistOutcome.DUPLICATE:
            acc.skip(SkipReason.ALREADY_SYNCED, call_id, agent_id, started)
        else:
            acc.skip(SkipReason.DELETED_BY_ADMIN, call_id, agent_id, started)


async def run_sync(
    context: SyncContext,
    kind: SyncKind = SyncKind.MANUAL,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> SyncRunSummary:
    return await SyncOrchestrator(context).run(kind, start, end)


def list_recent_runs(db: Session, account_id: int, limit: int = 20) -> List[SyncRun]:
    return RunLogStore(db).list(account_id, limit)


def last_successful_run(db: Session, account_id: int, kind: SyncKind) -> Optional[SyncRun]:
    return (
        db.query(SyncRun)
        .filter(
            SyncRun.account_id == account_id,
            SyncRun.kind == kind,
            SyncRun.status == SyncStatus.SUCCESS,
        )
        .order_by(SyncRun.completed_at.desc())
        .first()
    )


def recently_synced(
    db: Session, account_id: int, within: timedelta, now: Optional[datetime] = None
) -> bool:
    run = last_successful_run(db, account_id, SyncKind.AUTO)
    if run is None or run.completed_at is None:
        return False
    return (now or utcnow()) - run.completed_at < within
