"""Consecutive-day streak rule.

A streak counts calendar days with at least one session. Days are compared as
``date`` values at a fixed UTC offset, so a session logged at 23:50 and one at
00:10 fall on different days even though they are minutes apart.
"""
from datetime import date, datetime, timedelta, timezone


def today_local(offset_hours: float = 0) -> date:
    """Return the current date at the given fixed offset from UTC."""
    return (datetime.now(timezone.utc) + timedelta(hours=offset_hours)).date()


def session_minutes(duration_seconds: int) -> int:
    return duration_seconds // 60


def next_streak(streak, today: date):
    """Return ``(current, longest)`` after a session on ``today``.

    ``streak`` is the stored row (anything with ``current_streak``,
    ``longest_streak`` and ``last_meditation_date``) or ``None`` for a user
    who has never had one.
    """
    if streak is None:
        return 1, 1

    last = streak.last_meditation_date
    current = streak.current_streak or 0
    if last == today - timedelta(days=1):
        current += 1
    elif last == today:
        pass  # Same day: sessions count, the streak does not move
    else:
        current = 1  # Never meditated, or missed at least one day

    longest = max(current, streak.longest_streak or 0)
    return current, longest
