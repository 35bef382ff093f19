from sqlalchemy.orm import Session

from callsync.models import AuditLog


def log_event(
    db: Session,
    action: str,
    status: str,
    message: str = "",
    account_id: int | None = None,
    details: dict | None = None,
    commit: bool = True,
) -> None:
    entry = AuditLog(
        account_id=account_id,
        action=action,
        status=status,
        message=message,
        details=details or {},
    )
    db.add(entry)
    if commit:
        db.commit()
