import asyncio
from datetime import timedelta

import pytest

from callsync.errors import TokenRefreshError
from callsync.models import ProviderCredential
from callsync.services.tokens import TokenManager
from callsync.tests.factories import make_account, make_credential


def test_fresh_token_is_used_without_refresh(db, http, provider, config):
    account = make_account(db)
    credential = db.query(ProviderCredential).filter_by(account_id=account.id).one()

    token = asyncio.run(TokenManager(db, http, config).ensure_fresh(credential))

    assert token == "initial-access"
    assert provider.token_requests == []


def test_expiring_token_is_exchanged_and_persisted(db, http, provider, config):
    account = make_account(db, with_credential=False)
    credential = make_credential(db, account, expires_in=timedelta(minutes=2))

    token = asyncio.run(TokenManager(db, http, config).ensure_fresh(credential))

    assert token == "access-1"
    stored = db.query(ProviderCredential).filter_by(account_id=account.id).one()
    assert stored.refresh_token == "refresh-1"
    assert stored.version == 2
    form = provider.token_requests[0].content.decode()
    assert "grant_type=refresh_token" in form
    assert "refresh_token=initial-refresh" in form


def test_concurrent_refreshes_exchange_once(db, http, provider, config):
    account = make_account(db, with_credential=False)
    credential = make_credential(db, account, expires_in=timedelta(minutes=1))
    manager = TokenManager(db, http, config)

    async def both():
        return await asyncio.gather(manager.ensure_fresh(credential), manager.ensure_fresh(credential))

    tokens = asyncio.run(both())

    assert tokens == ["access-1", "access-1"]
    assert len(provider.token_requests) == 1


def test_rejected_refresh_raises_distinct_error(db, http, provider, config):
    account = make_account(db, with_credential=False)
    credential = make_credential(db, account, expires_in=timedelta(minutes=-10))
    provider.token_status = 401

    with pytest.raises(TokenRefreshError) as excinfo:
        asyncio.run(TokenManager(db, http, config).ensure_fresh(credential))
    assert excinfo.value.status_code == 401
    assert excinfo.value.reason == "token_refresh_failed"


def test_missing_refresh_token_fails(db, http, config):
    account = make_account(db, with_credential=False)
    credential = make_credential(db, account, expires_in=timedelta(0), refresh_token=None)

    with pytest.raises(TokenRefreshError):
        asyncio.run(TokenManager(db, http, config).ensure_fresh(credential))
