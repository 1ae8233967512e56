# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest

from watchsync.persistence import MemorySlot
from watchsync.session import SessionManager

TEST_ACCESS_TOKEN = "test_access_token"


class ManualScheduler:
    """TaskScheduler stand-in driven by advance() instead of timer threads."""

    def __init__(self):
        self.now = 0.0
        self._tasks = {}
        self._seq = 0
        self.closed = False

    def schedule(self, name, task, delay):
        if self.closed:
            return False
        self._seq += 1
        self._tasks[name] = (self.now + max(0.0, delay), self._seq, task)
        return True

    def cancel(self, name):
        return self._tasks.pop(name, None) is not None

    def is_scheduled(self, name):
        return name in self._tasks

    def delay_of(self, name):
        return self._tasks[name][0] - self.now

    def cancel_all(self):
        self._tasks.clear()

    def shutdown(self):
        self.closed = True
        self._tasks.clear()

    def advance(self, seconds=0.0):
        """Move the clock forward, running due tasks in order (including ones they schedule)."""
        target = self.now + seconds
        while True:
            due = [(when, seq, name) for name, (when, seq, _) in self._tasks.items() if when <= target]
            if not due:
                break
            when, _, name = min(due)
            _, _, task = self._tasks.pop(name)
            self.now = when
            task()
        self.now = target

    def run(self, name):
        """Run one pending task right away."""
        _, _, task = self._tasks.pop(name)
        task()


class FixedClock:
    """Clock returning a settable aware UTC datetime."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def tick(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def slot():
    return MemorySlot()


@pytest.fixture
def session():
    """Session holding a token, not backed by any file."""
    return SessionManager(token=TEST_ACCESS_TOKEN)


@pytest.fixture
def anonymous_session(monkeypatch):
    monkeypatch.delenv("WATCHSYNC_ACCESS_TOKEN", raising=False)
    return SessionManager()
