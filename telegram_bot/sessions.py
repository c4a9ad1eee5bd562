"""
Chat sessions.

A user unlocks the bot with /auth <password>. The session lasts
SESSION_TTL_HOURS and is what the automation scheduler walks each tick:
automation only runs for users with a live session.
"""

import hmac
import time
from typing import Callable

from utils.logger import get_logger

logger = get_logger(__name__)


class SessionStore:
    """
    Usage:
        sessions = SessionStore(password=settings.bot_password, ttl_seconds=24 * 3600)
        if sessions.authenticate(user_id, text): ...
        sessions.is_active(user_id)
    """

    def __init__(self, password: str, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self._password = password
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._expires_at: dict[str, float] = {}

    def check_password(self, candidate: str) -> bool:
        if not self._password:
            return False
        return hmac.compare_digest(candidate.encode(), self._password.encode())

    def authenticate(self, user_id: str, candidate: str) -> bool:
        """Open a session if the password matches."""
        if not self.check_password(candidate):
            logger.warning("auth_failed", user=str(user_id))
            return False
        self.open(user_id)
        return True

    def open(self, user_id: str) -> None:
        self._expires_at[str(user_id)] = self.clock() + self.ttl_seconds
        logger.info("session_opened", user=str(user_id))

    def close(self, user_id: str) -> None:
        if self._expires_at.pop(str(user_id), None) is not None:
            logger.info("session_closed", user=str(user_id))

    def is_active(self, user_id: str) -> bool:
        user_id = str(user_id)
        expires_at = self._expires_at.get(user_id)
        if expires_at is None:
            return False
        if expires_at <= self.clock():
            del self._expires_at[user_id]
            logger.info("session_expired", user=user_id)
            return False
        return True

    def active_user_ids(self) -> list[str]:
        return [user_id for user_id in list(self._expires_at) if self.is_active(user_id)]
