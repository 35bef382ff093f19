from typing import Any, Optional


class CallSyncError(Exception):
    """Base class for errors raised by the sync engine."""

    reason = "error"

    def to_details(self) -> dict:
        return {"reason": self.reason, "type": type(self).__name__, "message": str(self)}


class CredentialsMissingError(CallSyncError):
    reason = "credentials_missing"


class TokenRefreshError(CallSyncError):
    reason = "token_refresh_failed"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def to_details(self) -> dict:
        details = super().to_details()
        details["status_code"] = self.status_code
        return details


class ProviderFetchError(CallSyncError):
    reason = "provider_fetch_failed"

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def to_details(self) -> dict:
        details = super().to_details()
        details["status_code"] = self.status_code
        details["body"] = self.body[:500]
        return details


class ProviderSchemaError(CallSyncError):
    reason = "provider_schema_error"


class SyncTimeoutError(CallSyncError):
    reason = "timeout"


class RecordError(CallSyncError):
    """A single provider record could not be mapped or stored."""

    reason = "record_error"

    def __init__(self, message: str, call_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.call_id = call_id


class SyncInProgressError(CallSyncError):
    reason = "sync_in_progress"


class RunAlreadyCompletedError(CallSyncError):
    reason = "run_already_completed"


class SyncFailedError(CallSyncError):
    """Raised to the caller when a run ends in the failed state."""

    reason = "sync_failed"

    def __init__(self, message: str, summary: Any = None, cause: Optional[CallSyncError] = None) -> None:
        super().__init__(message)
        self.summary = summary
        self.cause = cause


class AccountNotFoundError(CallSyncError):
    reason = "account_not_found"


class InternalSyncError(CallSyncError):
    """Wraps an unexpected exception so the run can still be marked failed."""

    reason = "internal_error"

    def __init__(self, exc: BaseException) -> None:
        super().__init__(f"{type(exc).__name__}: {exc}".splitlines()[0])
        self.original = exc

    def to_details(self) -> dict:
        details = super().to_details()
        details["type"] = type(self.original).__name__
        return details
