"""
Per-user locks.

A user's wallet record is read, changed and saved as a whole. Chat
commands and the automation scheduler run concurrently on the same event
loop, so every read-modify-write of a record (and every buy or sell,
from quote to ledger update) holds that user's lock. Different users
never wait on each other.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from utils.logger import get_logger

logger = get_logger(__name__)


class UserLocks:
    """
    Registry of one asyncio.Lock per user id.

    Usage:
        locks = UserLocks()
        async with locks.hold(user_id):
            record = await store.get(user_id)
            ...
            await store.save(user_id, record)
    """

    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, user_id: str) -> asyncio.Lock:
        return self._locks[str(user_id)]

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(str(user_id))
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self.get(user_id)
        if lock.locked():
            logger.debug("user_lock_wait", user=str(user_id))
        async with lock:
            yield
