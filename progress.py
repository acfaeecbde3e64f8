"""Session recording and progress aggregates."""
import logging
from datetime import timedelta

from sqlalchemy import func

from models import db, ProgressEntry, Streak, utcnow
from streaks import next_streak, session_minutes

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)


def record_session(user_id, meditation_id, duration_seconds, today, rating=None, notes=None, now=None):
    """Insert a progress row and fold it into the user's streak, atomically.

    The streak row is locked for the rest of the transaction so concurrent
    sessions for the same user serialize. Any failure rolls back the progress
    row together with the streak change and re-raises.
    """
    try:
        entry = ProgressEntry(
            user_id=user_id,
            meditation_id=meditation_id,
            duration_seconds=duration_seconds,
            rating=rating,
            notes=notes,
            completed_at=now or utcnow(),
        )
        db.session.add(entry)
        db.session.flush()

        streak = Streak.query.filter_by(user_id=user_id).with_for_update().first()
        current, longest = next_streak(streak, today)
        if streak is None:
            streak = Streak(user_id=user_id, total_minutes=0, total_sessions=0)
            db.session.add(streak)

        streak.current_streak = current
        streak.longest_streak = longest
        streak.last_meditation_date = today
        streak.total_minutes = (streak.total_minutes or 0) + session_minutes(duration_seconds)
        streak.total_sessions = (streak.total_sessions or 0) + 1

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Recorded %ss session for user %s (streak %s/%s)",
                duration_seconds, user_id, current, longest)
    return entry, streak


def weekly_totals(user_id, now=None):
    """Return ``(sessions, minutes)`` completed in the seven days up to ``now``."""
    cutoff = (now or utcnow()) - WEEK
    sessions, seconds = (
        db.session.query(
            func.count(ProgressEntry.id),
            func.coalesce(func.sum(ProgressEntry.duration_seconds), 0),
        )
        .filter(ProgressEntry.user_id == user_id, ProgressEntry.completed_at >= cutoff)
        .one()
    )
    return sessions, session_minutes(int(seconds))


def recent_entries(user_id, limit, offset=0):
    return (
        ProgressEntry.query
        .filter_by(user_id=user_id)
        .order_by(ProgressEntry.completed_at.desc(), ProgressEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
