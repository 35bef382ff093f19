from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from callsync.core.database import get_db
from callsync.core.deps import get_current_account
from callsync.core.security import create_access_token, verify_password
from callsync.models import Account
from callsync.schemas import AccountOut, LoginRequest, TokenResponse
from callsync.services.audit import log_event

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    account = db.query(Account).filter(Account.username == payload.username).first()
    if not account or not verify_password(payload.password, account.password_hash):
        log_event(db, "login", "failed", "invalid credentials", account_id=account.id if account else None)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not account.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account inactive")
    log_event(db, "login", "success", account_id=account.id)
    return TokenResponse(access_token=create_access_token(account.id, account.role.value))


@router.get("/me", response_model=AccountOut)
def me(account: Account = Depends(get_current_account)):
    return account
