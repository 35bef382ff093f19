from callsync.models.account import Account, Role
from callsync.models.account_billing import AccountBilling
from callsync.models.agent import Agent, AgentAssignment
from callsync.models.audit_log import AuditLog
from callsync.models.call_record import CallDirection, CallRecord
from callsync.models.provider_credential import ProviderCredential
from callsync.models.sync_run import SyncKind, SyncRun, SyncStatus
from callsync.models.tombstone import DeletedCallTombstone

__all__ = [
    "Account",
    "AccountBilling",
    "Agent",
    "AgentAssignment",
    "AuditLog",
    "CallDirection",
    "CallRecord",
    "DeletedCallTombstone",
    "ProviderCredential",
    "Role",
    "SyncKind",
    "SyncRun",
    "SyncStatus",
]
