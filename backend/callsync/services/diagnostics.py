"""Read-only comparison of the provider's call set against the local store."""
import asyncio
import logging
import time
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, NoReturn, Optional, Tuple

from callsync.core.timeutil import isoformat_z
from callsync.errors import CallSyncError, InternalSyncError, SyncFailedError, SyncTimeoutError
from callsync.models import CallRecord, SyncKind, SyncStatus
from callsync.schemas import (
    AgentAnalysis,
    AgentBreakdown,
    CallComparison,
    DiagnosticReport,
    DiagnosticSummary,
    SyncRunSummary,
)
from callsync.services.agent_filter import AgentDirectory, SkipReason, agent_id_of
from callsync.services.call_writer import is_tombstoned, optional_str
from callsync.services.provider_client import DateRange, PageWalker
from callsync.services.run_log import RunCompletion, RunLogStore
from callsync.services.sync import SyncContext, get_account, get_active_credential, resolve_window

logger = logging.getLogger(__name__)

FILTERING_OR_SYNC_ISSUE = "filtering_or_sync_issue"
NOT_IN_PROVIDER_RESPONSE = "not_in_provider_response"
MISSING_CALL_ID = "missing_call_id"

AGENT_STATUS_BY_REASON = {
    SkipReason.NO_AGENT_ID: "missing",
    SkipReason.AGENT_NOT_IN_SYSTEM: "not_found",
    SkipReason.AGENT_NOT_ASSIGNED: "not_assigned",
    SkipReason.DELETED_BY_ADMIN: "deleted",
}


class DiagnosticComparator:
    def __init__(self, context: SyncContext) -> None:
        self.context = context
        self.db = context.db
        self.config = context.config
        self.schema = context.provider.schema
        self.store = RunLogStore(context.db, context.clock)

    async def compare(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        include_raw: bool = False,
    ) -> DiagnosticReport:
        started = time.monotonic()
        account_id = self.context.account_id
        account = get_account(self.db, account_id)
        window = resolve_window(self.db, account, start, end, now=self.context.clock())
        logger.info(
            "Diagnostic for account %s over %s to %s",
            account_id,
            isoformat_z(window.start),
            isoformat_z(window.end),
        )
        request_params = {
            "startDate": isoformat_z(window.start),
            "endDate": isoformat_z(window.end),
            "includeRawData": include_raw,
            "maxPages": self.config.max_pages,
        }
        run_id = self.store.create(account_id, SyncKind.DIAGNOSTIC, request_params)

        try:
            report, walker, provider_calls = await asyncio.wait_for(
                self._collect(run_id, window, include_raw),
                timeout=self.config.sync_run_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._fail(
                run_id,
                SyncTimeoutError(f"Diagnostic exceeded {self.config.sync_run_timeout_seconds}s"),
            )
        except CallSyncError as exc:
            self._fail(run_id, exc)
        except Exception as exc:
            logger.exception("Diagnostic run %s for account %s crashed", run_id, account_id)
            self.db.rollback()
            self.store.complete(
                run_id,
                RunCompletion(
                    status=SyncStatus.FAILED, error_details=InternalSyncError(exc).to_details()
                ),
            )
            raise
        report.duration_ms = int((time.monotonic() - started) * 1000)

        self.store.complete(
            run_id,
            RunCompletion(
                status=SyncStatus.PARTIAL if walker.limit_reached else SyncStatus.SUCCESS,
                response_summary={
                    "totalFetched": len(provider_calls),
                    "pageCount": walker.pages_fetched,
                    "pageLimitReached": walker.limit_reached,
                    "pages": walker.page_log,
                },
                processing_summary={
                    "providerTotal": report.summary.provider_total,
                    "databaseTotal": report.summary.database_total,
                    "matching": report.summary.matching,
                    "missingInDatabase": report.summary.missing_in_database,
                    "extraInDatabase": report.summary.extra_in_database,
                    "reasonBreakdown": report.reason_breakdown,
                },
                sampled_skipped_items=[
                    call.model_dump(by_alias=True)
                    for call in report.missing_calls[: self.config.sample_skipped_limit]
                ],
                error_details=(
                    {"reason": "page_limit_reached", "maxPages": self.config.max_pages}
                    if walker.limit_reached
                    else None
                ),
            ),
        )
        return report

    def _fail(self, run_id: int, exc: CallSyncError) -> NoReturn:
        logger.error(
            "Diagnostic run %s for account %s failed: %s", run_id, self.context.account_id, exc
        )
        run = self.store.complete(
            run_id, RunCompletion(status=SyncStatus.FAILED, error_details=exc.to_details())
        )
        raise SyncFailedError(str(exc), SyncRunSummary.from_run(run), exc) from exc

    async def _collect(
        self, run_id: int, window: DateRange, include_raw: bool
    ) -> Tuple[DiagnosticReport, PageWalker, List[Dict[str, Any]]]:
        account_id = self.context.account_id
        credential = get_active_credential(self.db, account_id)
        walker = PageWalker(
            client=self.context.provider,
            credentials=credential,
            date_range=window,
            max_pages=self.config.max_pages,
            page_delay=self.config.provider_page_delay_seconds,
            account_id=account_id,
        )
        provider_calls: List[Dict[str, Any]] = []
        async for page in walker.pages():
            provider_calls.extend(raw for raw in page.records if isinstance(raw, dict))

        local_calls = self._local_calls(window)
        directory = AgentDirectory.load(self.db, account_id)
        report = self._build_report(run_id, provider_calls, local_calls, directory, window, walker)
        if include_raw:
            report.raw_data = {
                "providerCalls": provider_calls,
                "databaseCalls": [self._local_row(call) for call in local_calls],
            }
        return report, walker, provider_calls

    def _local_calls(self, window: DateRange) -> List[CallRecord]:
        return (
            self.db.query(CallRecord)
            .filter(
                CallRecord.account_id == self.context.account_id,
                CallRecord.started_at >= window.start,
                CallRecord.started_at <= window.end,
            )
            .order_by(CallRecord.started_at.desc())
            .all()
        )

    @staticmethod
    def _local_row(call: CallRecord) -> Dict[str, Any]:
        return {
            "externalCallId": call.external_call_id,
            "agentExternalId": call.agent_external_id,
            "fromNumber": call.from_number,
            "toNumber": call.to_number,
            "startedAt": isoformat_z(call.started_at),
            "contactName": call.contact_name,
        }

    def attribute(self, raw: Dict[str, Any], directory: AgentDirectory) -> SkipReason | str:
        """The reason a sync would give for not storing ``raw``."""
        decision = directory.classify(raw, self.schema)
        if not decision.accepted:
            return decision.reason
        call_id = raw.get(self.schema.id_field)
        if call_id not in (None, "") and is_tombstoned(self.db, self.context.account_id, str(call_id)):
            return SkipReason.DELETED_BY_ADMIN
        return FILTERING_OR_SYNC_ISSUE

    def _comparison(self, raw: Dict[str, Any], status: str, **extra) -> CallComparison:
        schema = self.schema
        return CallComparison(
            call_id=optional_str(raw.get(schema.id_field)),
            status=status,
            agent_id=agent_id_of(raw, schema),
            from_number=optional_str(raw.get(schema.from_field)),
            to_number=optional_str(raw.get(schema.to_field)),
            call_date=optional_str(raw.get(schema.started_field)),
            contact_name=optional_str(raw.get(schema.contact_field)),
            **extra,
        )

    def _build_report(
        self,
        run_id: int,
        provider_calls: List[Dict[str, Any]],
        local_calls: List[CallRecord],
        directory: AgentDirectory,
        window: DateRange,
        walker: PageWalker,
    ) -> DiagnosticReport:
        id_field = self.schema.id_field
        provider_ids = {optional_str(raw.get(id_field)) for raw in provider_calls} - {None}
        local_ids = {call.external_call_id for call in local_calls}

        matching: List[CallComparison] = []
        missing: List[CallComparison] = []
        seen = set()
        for raw in provider_calls:
            call_id = optional_str(raw.get(id_field))
            if call_id is None:
                # Cannot be matched or stored; every such record is reported.
                decision = directory.classify(raw, self.schema)
                agent_status = AGENT_STATUS_BY_REASON.get(decision.reason, "assigned")
                missing.append(
                    self._comparison(
                        raw, "only_provider", agent_status=agent_status, reason=MISSING_CALL_ID
                    )
                )
                continue
            if call_id in seen:
                continue
            seen.add(call_id)
            if call_id in local_ids:
                matching.append(self._comparison(raw, "in_both"))
                continue
            reason = self.attribute(raw, directory)
            if isinstance(reason, SkipReason):
                agent_status = AGENT_STATUS_BY_REASON[reason]
                reason = reason.value
            else:
                agent_status = "assigned"
            missing.append(
                self._comparison(raw, "only_provider", agent_status=agent_status, reason=reason)
            )

        extra = [
            CallComparison(
                call_id=call.external_call_id,
                status="only_database",
                agent_id=call.agent_external_id,
                reason=NOT_IN_PROVIDER_RESPONSE,
                from_number=call.from_number,
                to_number=call.to_number,
                call_date=isoformat_z(call.started_at),
                contact_name=call.contact_name,
            )
            for call in local_calls
            if call.external_call_id not in provider_ids
        ]

        reason_counts = Counter(call.reason for call in missing)
        return DiagnosticReport(
            run_id=run_id,
            account_id=self.context.account_id,
            summary=DiagnosticSummary(
                date_range={"start": isoformat_z(window.start), "end": isoformat_z(window.end)},
                provider_total=len(provider_calls),
                database_total=len(local_calls),
                matching=len(matching),
                missing_in_database=len(missing),
                extra_in_database=len(extra),
                pages_fetched=walker.pages_fetched,
                page_limit_reached=walker.limit_reached,
            ),
            missing_calls=missing,
            extra_calls=extra,
            reason_breakdown=dict(reason_counts),
            agent_breakdown=self._agent_breakdown(missing, directory),
            agent_analysis=self._agent_analysis(provider_calls, directory),
        )

    @staticmethod
    def _agent_breakdown(
        missing: List[CallComparison], directory: AgentDirectory
    ) -> List[AgentBreakdown]:
        counts = Counter(call.agent_id for call in missing)
        return [
            AgentBreakdown(
                agent_external_id=agent_id,
                name=directory.name_of(agent_id),
                is_assigned_locally=agent_id in directory.assigned_ids,
                in_system=agent_id in directory.known_ids,
                occurrence_count=count,
            )
            for agent_id, count in counts.most_common()
        ]

    def _agent_analysis(
        self, provider_calls: List[Dict[str, Any]], directory: AgentDirectory
    ) -> AgentAnalysis:
        counts = Counter(
            agent_id
            for agent_id in (agent_id_of(raw, self.schema) for raw in provider_calls)
            if agent_id is not None
        )
        unassigned = [
            AgentBreakdown(
                agent_external_id=agent_id,
                name=directory.name_of(agent_id) or "Unknown",
                is_assigned_locally=False,
                in_system=agent_id in directory.known_ids,
                occurrence_count=count,
            )
            for agent_id, count in counts.most_common()
            if agent_id not in directory.assigned_ids
        ]
        return AgentAnalysis(
            total_agents_in_calls=len(counts),
            assigned_to_account=len(directory.assigned_ids),
            unassigned_agents=unassigned,
        )


async def run_diagnostic(
    context: SyncContext,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    include_raw: bool = False,
) -> DiagnosticReport:
    return await DiagnosticComparator(context).compare(start, end, include_raw)
