import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from callsync.core.config import Settings, settings as default_settings
from callsync.core.timeutil import utcnow
from callsync.errors import TokenRefreshError
from callsync.models import ProviderCredential
from callsync.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

refresh_locks = KeyedLocks()


class TokenManager:
    """Keeps an account's provider access token fresh.

    Refreshes for one account are serialized, and the row is written with a
    version check so two processes never both spend the same refresh token.
    """

    def __init__(
        self,
        db: Session,
        http: httpx.AsyncClient,
        config: Settings = default_settings,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.http = http
        self.config = config
        self.locks = locks or refresh_locks
        self.clock = clock
        self.margin = timedelta(minutes=config.token_refresh_margin_minutes)

    def is_expiring(self, credential: ProviderCredential) -> bool:
        return credential.token_expires_at - self.clock() <= self.margin

    async def ensure_fresh(self, credential: ProviderCredential) -> str:
        if not self.is_expiring(credential):
            return credential.access_token
        await self.refresh(credential)
        return credential.access_token

    async def refresh(self, credential: ProviderCredential, force: bool = False) -> None:
        async with self.locks.get(credential.account_id):
            self.db.refresh(credential)
            if not force and not self.is_expiring(credential):
                logger.debug("Account %s token refreshed by another task", credential.account_id)
                return
            await self._exchange(credential)

    async def _exchange(self, credential: ProviderCredential) -> None:
        if not credential.refresh_token:
            raise TokenRefreshError(f"Account {credential.account_id} has no refresh token")
        form = {
            "client_id": self.config.provider_client_id,
            "client_secret": self.config.provider_client_secret,
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
            "user_type": "Location" if credential.location_id else "Company",
            "redirect_uri": self.config.provider_redirect_uri,
        }
        logger.info("Refreshing provider token for account %s", credential.account_id)
        try:
            response = await self.http.post(self.config.provider_token_url, data=form)
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Token refresh request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TokenRefreshError(
                f"Token refresh returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
            access_token = payload["access_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as exc:
            raise TokenRefreshError("Token refresh response is malformed") from exc

        current_version = credential.version
        updated = (
            self.db.query(ProviderCredential)
            .filter(
                ProviderCredential.id == credential.id,
                ProviderCredential.version == current_version,
            )
            .update(
                {
                    ProviderCredential.access_token: access_token,
                    ProviderCredential.refresh_token: payload.get("refresh_token")
                    or credential.refresh_token,
                    ProviderCredential.token_expires_at: self.clock()
                    + timedelta(seconds=expires_in),
                    ProviderCredential.version: current_version + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        self.db.refresh(credential)
        if not updated:
            logger.warning(
                "Account %s credentials changed during refresh; using stored token",
                credential.account_id,
            )
            return
        logger.info(
            "Account %s token refreshed, expires at %s",
            credential.account_id,
            credential.token_expires_at,
        )
