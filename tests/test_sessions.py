"""
Tests for telegram_bot/sessions.py
"""

import pytest

from telegram_bot.sessions import SessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sessions(clock):
    return SessionStore(password="letmein", ttl_seconds=3600, clock=clock)


class TestSessions:
    """Password gate and session expiry."""

    def test_correct_password_opens_session(self, sessions):
        assert sessions.authenticate("1", "letmein")
        assert sessions.is_active("1")

    def test_wrong_password_rejected(self, sessions):
        assert not sessions.authenticate("1", "letme")
        assert not sessions.authenticate("1", "")
        assert not sessions.is_active("1")

    def test_empty_configured_password_rejects_everyone(self, clock):
        sessions = SessionStore(password="", ttl_seconds=3600, clock=clock)
        assert not sessions.authenticate("1", "")
        assert not sessions.is_active("1")

    def test_session_expires(self, sessions, clock):
        sessions.authenticate("1", "letmein")

        clock.now += 3599
        assert sessions.is_active("1")

        clock.now += 1
        assert not sessions.is_active("1")
        assert sessions.active_user_ids() == []

    def test_logout(self, sessions):
        sessions.authenticate("1", "letmein")
        sessions.close("1")
        sessions.close("1")
        assert not sessions.is_active("1")

    def test_active_user_ids(self, sessions, clock):
        sessions.authenticate("1", "letmein")
        clock.now += 1800
        sessions.authenticate(2, "letmein")
        clock.now += 1800

        assert sessions.active_user_ids() == ["2"]
