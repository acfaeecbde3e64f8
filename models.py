from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value is not None else None


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(100), nullable=True)
    avatar_url = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    progress = db.relationship("ProgressEntry", backref="user", lazy=True,
                               cascade="all, delete-orphan", passive_deletes=True)
    streak = db.relationship("Streak", backref="user", uselist=False,
                             cascade="all, delete-orphan", passive_deletes=True)

    def set_password(self, plaintext: str):
        self.password_hash = generate_password_hash(plaintext)

    def check_password(self, plaintext: str) -> bool:
        return check_password_hash(self.password_hash, plaintext)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"


class Meditation(db.Model):
    __tablename__ = "meditations"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(50), nullable=False)
    scenario = db.Column(db.String(100), nullable=True)
    audio_url = db.Column(db.Text, nullable=False)
    image_url = db.Column(db.Text, nullable=True)
    instructor = db.Column(db.String(100), nullable=True)
    difficulty = db.Column(db.String(20), nullable=False, default="beginner")
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    play_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    progress = db.relationship("ProgressEntry", backref="meditation", lazy=True,
                               cascade="all, delete-orphan", passive_deletes=True)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "durationMinutes": self.duration_minutes,
            "category": self.category,
            "scenario": self.scenario,
            "audioUrl": self.audio_url,
            "imageUrl": self.image_url,
            "instructor": self.instructor,
            "difficulty": self.difficulty,
            "isFeatured": self.is_featured,
            "playCount": self.play_count,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Meditation {self.title} {self.duration_minutes}min>"


class ProgressEntry(db.Model):
    __tablename__ = "user_progress"
    __table_args__ = (
        db.CheckConstraint("rating >= 1 AND rating <= 5", name="user_progress_rating_check"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    meditation_id = db.Column(db.Integer, db.ForeignKey("meditations.id", ondelete="CASCADE"),
                              nullable=False)
    duration_seconds = db.Column(db.Integer, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    rating = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "meditationId": self.meditation_id,
            "durationSeconds": self.duration_seconds,
            "completedAt": _iso(self.completed_at),
            "rating": self.rating,
            "notes": self.notes,
        }

    def to_history_dict(self):
        """History row as the profile screen lists it, with the meditation inlined."""
        m = self.meditation
        return {
            "id": self.id,
            "meditationId": self.meditation_id,
            "title": m.title if m else None,
            "category": m.category if m else None,
            "durationMinutes": m.duration_minutes if m else None,
            "actualSeconds": self.duration_seconds,
            "rating": self.rating,
            "notes": self.notes,
            "completedAt": _iso(self.completed_at),
        }

    def __repr__(self):
        return f"<ProgressEntry user={self.user_id} meditation={self.meditation_id} {self.duration_seconds}s>"


class Streak(db.Model):
    __tablename__ = "user_streaks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
                        unique=True, nullable=False)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    last_meditation_date = db.Column(db.Date, nullable=True)
    total_minutes = db.Column(db.Integer, nullable=False, default=0)
    total_sessions = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "lastMeditationDate": _iso(self.last_meditation_date),
            "totalMinutes": self.total_minutes,
            "totalSessions": self.total_sessions,
        }

    def __repr__(self):
        return f"<Streak user={self.user_id} current={self.current_streak} longest={self.longest_streak}>"
