from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from callsync.core.security import hash_password
from callsync.core.timeutil import utcnow
from callsync.models import (
    Account,
    AccountBilling,
    Agent,
    AgentAssignment,
    ProviderCredential,
    Role,
)


def make_account(
    db: Session,
    username: str = "client",
    password: str = "clientpassword",
    role: Role = Role.CLIENT,
    created_at: datetime = datetime(2024, 1, 1),
    is_active: bool = True,
    with_credential: bool = True,
) -> Account:
    account = Account(
        username=username,
        password_hash=hash_password(password),
        role=role,
        created_at=created_at,
        is_active=is_active,
    )
    db.add(account)
    db.commit()
    if with_credential:
        make_credential(db, account)
    return account


def make_credential(
    db: Session,
    account: Account,
    expires_in: timedelta = timedelta(hours=12),
    access_token: str = "initial-access",
    refresh_token: Optional[str] = "initial-refresh",
) -> ProviderCredential:
    credential = ProviderCredential(
        account_id=account.id,
        location_id=f"loc-{account.id}",
        access_token=access_token,
        refresh_token=refresh_token,
        token_expires_at=utcnow() + expires_in,
    )
    db.add(credential)
    db.commit()
    return credential


def make_agent(db: Session, external_id: str, name: Optional[str] = None, assign_to: Optional[Account] = None) -> Agent:
    agent = Agent(external_agent_id=external_id, name=name or external_id.title())
    db.add(agent)
    db.commit()
    if assign_to is not None:
        db.add(AgentAssignment(account_id=assign_to.id, agent_id=agent.id))
        db.commit()
    return agent


def set_reset_cursor(db: Session, account: Account, reset_at: datetime) -> None:
    db.add(AccountBilling(account_id=account.id, calls_reset_at=reset_at))
    db.commit()
