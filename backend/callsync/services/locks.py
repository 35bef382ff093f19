"""Per-account mutual exclusion for sync runs and token refreshes."""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

from callsync.core.config import Settings, settings as default_settings
from callsync.errors import SyncInProgressError

logger = logging.getLogger(__name__)


class KeyedLocks:
    """``asyncio.Lock`` per key, kept separately for each running event loop."""

    def __init__(self) -> None:
        self._locks: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()

    def get(self, key: Hashable) -> asyncio.Lock:
        locks = self._locks.setdefault(asyncio.get_running_loop(), {})
        return locks.setdefault(key, asyncio.Lock())


class AccountLocks:
    """Non-blocking single-flight guard keyed by account id.

    The in-process lock covers concurrent requests in one worker. With Redis
    configured, a Redis lock with the same key is taken as well so runs from
    the API, Celery workers and other hosts exclude each other. A client built
    from ``redis_url`` is created per event loop because Celery tasks each run
    in a fresh ``asyncio.run`` loop.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        lock_timeout: float = 360.0,
        redis_url: Optional[str] = None,
    ) -> None:
        self._local = KeyedLocks()
        self.redis_client = redis_client
        self.redis_url = redis_url
        self.lock_timeout = lock_timeout
        self._clients: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()

    @staticmethod
    def key(account_id: int) -> str:
        return f"callsync:lock:{account_id}"

    def is_held(self, account_id: int) -> bool:
        return self._local.get(account_id).locked()

    def remote_client(self) -> Optional[redis.Redis]:
        if self.redis_client is not None:
            return self.redis_client
        if self.redis_url is None:
            return None
        loop = asyncio.get_running_loop()
        client = self._clients.get(loop)
        if client is None:
            client = self._clients[loop] = redis.from_url(self.redis_url)
        return client

    @asynccontextmanager
    async def hold(self, account_id: int) -> AsyncIterator[None]:
        local = self._local.get(account_id)
        if local.locked():
            raise SyncInProgressError(f"A sync is already running for account {account_id}")
        await local.acquire()
        try:
            remote = None
            client = self.remote_client()
            if client is not None:
                remote = client.lock(self.key(account_id), timeout=self.lock_timeout)
                if not await remote.acquire(blocking=False):
                    raise SyncInProgressError(
                        f"A sync is already running for account {account_id} on another worker"
                    )
            try:
                yield
            finally:
                if remote is not None:
                    try:
                        await remote.release()
                    except LockError:
                        logger.warning("Lock for account %s expired before release", account_id)
        finally:
            local.release()


def build_account_locks(config: Settings = default_settings) -> AccountLocks:
    return AccountLocks(
        lock_timeout=config.sync_run_timeout_seconds + 60,
        redis_url=config.redis_url if config.distributed_locks else None,
    )


account_locks = build_account_locks()
