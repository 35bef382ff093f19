import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from callsync.core.database import get_db
from callsync.core.security import decode_access_token
from callsync.models import Account, Role

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_account(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Account:
    try:
        account_id = decode_access_token(token)
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    account = db.get(Account, account_id)
    if not account or not account.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive account")
    return account


def require_admin(account: Account = Depends(get_current_account)) -> Account:
    if account.role != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin required")
    return account


def require_account_access(account_id: int, account: Account = Depends(get_current_account)) -> Account:
    """Owner of ``account_id`` or an admin."""
    if account.role != Role.ADMIN and account.id != account_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return account


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http
