from fastapi import HTTPException, status

from callsync.errors import (
    AccountNotFoundError,
    CallSyncError,
    CredentialsMissingError,
    SyncFailedError,
    SyncInProgressError,
)


def http_error(exc: CallSyncError) -> HTTPException:
    """Map an engine error to the response the API returns for it."""
    if isinstance(exc, SyncInProgressError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AccountNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, SyncFailedError):
        detail = {"message": str(exc)}
        if exc.summary is not None:
            detail["summary"] = exc.summary.model_dump(mode="json", by_alias=True)
        if exc.cause is not None:
            detail["error"] = exc.cause.to_details()
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
    if isinstance(exc, CredentialsMissingError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_details())
