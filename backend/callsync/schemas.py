from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from callsync.models import Role, SyncKind, SyncRun, SyncStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LoginRequest(BaseModel):
    username: str = Field(min_length=3, max_length=150)
    password: str = Field(min_length=5, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: Role
    is_active: bool


class DateRangeRequest(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class DiagnosticRequest(DateRangeRequest):
    include_raw_data: bool = False


class SyncRunSummary(CamelModel):
    run_id: int
    account_id: int
    kind: SyncKind
    status: SyncStatus
    total_fetched: int = 0
    page_count: int = 0
    page_limit_reached: bool = False
    saved: int = 0
    skipped: int = 0
    errors: int = 0
    duplicates: int = 0
    skip_reason_histogram: Dict[str, int] = Field(default_factory=dict)
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_run(cls, run: SyncRun) -> "SyncRunSummary":
        response = run.response_summary or {}
        processing = run.processing_summary or {}
        return cls(
            run_id=run.id,
            account_id=run.account_id,
            kind=run.kind,
            status=run.status,
            total_fetched=response.get("totalFetched", 0),
            page_count=response.get("pageCount", 0),
            page_limit_reached=response.get("pageLimitReached", False),
            saved=processing.get("saved", 0),
            skipped=processing.get("skipped", 0),
            errors=processing.get("errors", 0),
            duplicates=processing.get("duplicates", 0),
            skip_reason_histogram=processing.get("skipReasonHistogram", {}),
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_ms=run.duration_ms,
            error_details=run.error_details,
        )


class SyncRunOut(CamelModel):
    id: int
    account_id: int
    kind: SyncKind
    status: SyncStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    request_params: Dict[str, Any] = Field(default_factory=dict)
    response_summary: Dict[str, Any] = Field(default_factory=dict)
    processing_summary: Dict[str, Any] = Field(default_factory=dict)
    sampled_skipped_items: List[Dict[str, Any]] = Field(default_factory=list)
    error_details: Optional[Dict[str, Any]] = None


class CallComparison(CamelModel):
    call_id: Optional[str] = None
    status: Literal["in_both", "only_provider", "only_database"]
    agent_id: Optional[str] = None
    agent_status: Optional[str] = None
    reason: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    call_date: Optional[str] = None
    contact_name: Optional[str] = None


class DiagnosticSummary(CamelModel):
    date_range: Dict[str, str]
    provider_total: int
    database_total: int
    matching: int
    missing_in_database: int
    extra_in_database: int
    pages_fetched: int
    page_limit_reached: bool = False


class AgentBreakdown(CamelModel):
    agent_external_id: Optional[str] = None
    name: Optional[str] = None
    is_assigned_locally: bool = False
    in_system: bool = False
    occurrence_count: int = 0


class AgentAnalysis(CamelModel):
    total_agents_in_calls: int
    assigned_to_account: int
    unassigned_agents: List[AgentBreakdown] = Field(default_factory=list)


class DiagnosticReport(CamelModel):
    run_id: int
    account_id: int
    summary: DiagnosticSummary
    missing_calls: List[CallComparison] = Field(default_factory=list)
    extra_calls: List[CallComparison] = Field(default_factory=list)
    reason_breakdown: Dict[str, int] = Field(default_factory=dict)
    agent_breakdown: List[AgentBreakdown] = Field(default_factory=list)
    agent_analysis: AgentAnalysis
    duration_ms: int = 0
    raw_data: Optional[Dict[str, Any]] = None


class ResetCallsResult(CamelModel):
    account_id: int
    deleted_calls_count: int
    calls_reset_at: datetime


class DeleteCallResult(CamelModel):
    call_id: int
    external_call_id: str
    tombstoned: bool
