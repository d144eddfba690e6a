from __future__ import annotations

from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context


class SystemClock:
    """Naive UTC wall clock.

    SQLite drops tzinfo on round trips, so every timestamp in the system is
    naive UTC to keep arithmetic between fresh and reloaded values valid.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock:
    def __init__(self, start: datetime) -> None:
        self._current = start

    def now(self) -> datetime:
        return self._current

    def advance(self, **kwargs) -> datetime:
        self._current = self._current + timedelta(**kwargs)
        return self._current

    def set(self, value: datetime) -> None:
        self._current = value


def now() -> datetime:
    if has_app_context():
        clock = current_app.extensions.get("clock")
        if clock is not None:
            return clock.now()
    return SystemClock().now()
