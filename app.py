import os
import json
import logging
import sqlite3
from functools import wraps

import click
from dotenv import load_dotenv
from flask import Flask, request, jsonify
from itsdangerous import URLSafeTimedSerializer, BadData, BadSignature
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from models import db, User, Meditation, Streak
from progress import record_session, weekly_totals, recent_entries
from streaks import today_local

load_dotenv()

# ── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

# ── Streak day boundary ───────────────────────────────────────────────────────
# Streak days are calendar days at a fixed offset from UTC (default: UTC).
# A client in another zone near midnight may see its session land on the
# server's "yesterday" or "tomorrow".
STREAK_TZ_OFFSET_HOURS = float(os.environ.get("STREAK_TZ_OFFSET_HOURS", "0"))


def streak_today():
    """Return the calendar day that a session recorded now counts towards."""
    return today_local(STREAK_TZ_OFFSET_HOURS)


basedir = os.path.abspath(os.path.dirname(__file__))


def _engine_options(uri, timeout):
    """Bound how long a request may wait on the datastore."""
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}
    return {
        "pool_pre_ping": True,
        "pool_timeout": timeout,
        "connect_args": {"connect_timeout": int(timeout)},
    }


app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(basedir, "mindful_moment.db"),
)
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(
    app.config["SQLALCHEMY_DATABASE_URI"],
    float(os.environ.get("DB_TIMEOUT_SECONDS", "5")),
)
app.config["TOKEN_MAX_AGE"] = int(os.environ.get("TOKEN_MAX_AGE_SECONDS", 7 * 24 * 3600))

db.init_app(app)


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# ── Tokens ────────────────────────────────────────────────────────────────────

def _token_serializer():
    return URLSafeTimedSerializer(app.config["SECRET_KEY"], salt="auth-token")


def issue_token(user_id: int) -> str:
    return _token_serializer().dumps({"user_id": user_id})


def verify_token(token: str) -> int:
    """Return the user id in ``token``; raises ``BadData`` if it is forged,
    malformed or older than ``TOKEN_MAX_AGE``."""
    data = _token_serializer().loads(token, max_age=app.config["TOKEN_MAX_AGE"])
    if not isinstance(data, dict) or not isinstance(data.get("user_id"), int):
        raise BadSignature("Token payload has no user id")
    return data["user_id"]


def token_required(f):
    """Authenticate the bearer token and pass the user id as the first argument."""
    @wraps(f)
    def decorated(*args, **kwargs):
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return jsonify({"error": "No token provided"}), 401
        try:
            user_id = verify_token(header[len("Bearer "):].strip())
        except BadData:
            return jsonify({"error": "Invalid token"}), 401
        return f(user_id, *args, **kwargs)
    return decorated


# ── Helpers ───────────────────────────────────────────────────────────────────

def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# Largest value an INTEGER column holds on every supported backend
MAX_DB_INT = 2**31 - 1


def _positive_int(value):
    """Parse a strictly positive integer that fits an INTEGER column, or return None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdecimal()):
            return None
        value = int(value)
    if isinstance(value, int) and 0 < value <= MAX_DB_INT:
        return value
    return None


def _optional_text(data, key):
    """Return ``(text, ok)``; absent or null fields are allowed, other non-strings are not."""
    value = data.get(key)
    if value is None:
        return None, True
    if not isinstance(value, str):
        return None, False
    return value.strip(), True


def _parse_rating(value):
    """Return ``(rating, ok)``. Missing or empty ratings are allowed."""
    if value is None or value == "":
        return None, True
    rating = _positive_int(value)
    if rating is None or rating > 5:
        return None, False
    return rating, True


def _auth_payload(user):
    return {"user": user.to_dict(), "token": issue_token(user.id)}


def load_catalog(path=None):
    catalog_path = path or os.path.join(basedir, "meditations.json")
    with open(catalog_path, "r", encoding="utf-8") as f:
        return json.load(f)


_CATALOG_FIELDS = {c.name for c in Meditation.__table__.columns} - {"id", "play_count", "created_at"}


def seed_meditations(items):
    """Insert catalog entries whose title is not in the database yet."""
    existing = {title for (title,) in db.session.query(Meditation.title).all()}
    added = 0
    for item in items:
        if item.get("title") in existing:
            continue
        db.session.add(Meditation(**{k: v for k, v in item.items() if k in _CATALOG_FIELDS}))
        existing.add(item["title"])
        added += 1
    db.session.commit()
    return added


# ── Errors ────────────────────────────────────────────────────────────────────

@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({"error": e.description}), e.code


@app.errorhandler(SQLAlchemyError)
def handle_db_error(e):
    db.session.rollback()
    logger.exception("Datastore error on %s %s", request.method, request.path)
    return jsonify({"error": "Internal server error"}), 500


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    db.session.rollback()
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"error": "Internal server error"}), 500


@app.after_request
def add_cors_headers(response):
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    return response


@app.route("/api/v1/health")
def health():
    logger.info("Health check success")
    return jsonify({"status": "ok"})


# ── Auth routes ───────────────────────────────────────────────────────────────

@app.route("/api/v1/auth/register", methods=["POST"])
def register():
    data = _json_body()
    email, email_ok = _optional_text(data, "email")
    password = data.get("password")
    display_name, name_ok = _optional_text(data, "displayName")
    if not email_ok or not email or not isinstance(password, str) or not password:
        return jsonify({"error": "Email and password are required"}), 400
    if not name_ok:
        return jsonify({"error": "Display name must be text"}), 400
    email = email.lower()
    display_name = display_name or None
    if User.query.filter_by(email=email).first():
        return jsonify({"error": "Email already registered"}), 400

    u = User(email=email, display_name=display_name)
    u.set_password(password)
    u.streak = Streak(current_streak=0, longest_streak=0, total_minutes=0, total_sessions=0)
    db.session.add(u)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "Email already registered"}), 400

    logger.info("Registered user %s", u.id)
    return jsonify(_auth_payload(u))


@app.route("/api/v1/auth/login", methods=["POST"])
def login():
    data = _json_body()
    email, email_ok = _optional_text(data, "email")
    password = data.get("password")
    if not email_ok or not email or not isinstance(password, str) or not password:
        return jsonify({"error": "Email and password are required"}), 400
    email = email.lower()
    user = User.query.filter_by(email=email).first()
    if user and user.check_password(password):
        return jsonify(_auth_payload(user))
    return jsonify({"error": "Invalid email or password"}), 401


@app.route("/api/v1/auth/me")
@token_required
def me(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user.to_dict()})


# ── Meditation catalog ────────────────────────────────────────────────────────

@app.route("/api/v1/meditations")
def list_meditations():
    query = Meditation.query
    category = request.args.get("category")
    if category:
        query = query.filter_by(category=category)
    duration = request.args.get("duration")
    if duration:
        try:
            minutes = int(duration)
        except ValueError:
            minutes = None
        if minutes is None or not 0 <= minutes <= MAX_DB_INT:
            return jsonify({"error": "Duration must be a whole number of minutes"}), 400
        query = query.filter_by(duration_minutes=minutes)
    if request.args.get("featured") == "true":
        query = query.filter_by(is_featured=True)
    items = query.order_by(Meditation.created_at.desc(), Meditation.id.desc()).all()
    return jsonify({"meditations": [m.to_dict() for m in items]})


@app.route("/api/v1/meditations/categories")
def list_categories():
    rows = db.session.query(Meditation.category).distinct().order_by(Meditation.category).all()
    return jsonify({"categories": [category for (category,) in rows]})


@app.route("/api/v1/meditations/<int:meditation_id>")
def get_meditation(meditation_id):
    m = db.session.get(Meditation, meditation_id)
    if m is None:
        return jsonify({"error": "Meditation not found"}), 404
    return jsonify({"meditation": m.to_dict()})


@app.route("/api/v1/meditations/<int:meditation_id>/play", methods=["POST"])
def play_meditation(meditation_id):
    # Single-statement increment, no read-modify-write
    updated = (
        Meditation.query
        .filter_by(id=meditation_id)
        .update({Meditation.play_count: Meditation.play_count + 1}, synchronize_session=False)
    )
    db.session.commit()
    if not updated:
        return jsonify({"error": "Meditation not found"}), 404
    return jsonify({"message": "Play count updated"})


# ── Progress ──────────────────────────────────────────────────────────────────

@app.route("/api/v1/progress", methods=["POST"])
@token_required
def record_progress(user_id):
    data = _json_body()
    meditation_id = _positive_int(data.get("meditationId"))
    duration_seconds = _positive_int(data.get("durationSeconds"))
    if meditation_id is None or duration_seconds is None:
        return jsonify({"error": "Meditation ID and duration are required"}), 400
    rating, ok = _parse_rating(data.get("rating"))
    if not ok:
        return jsonify({"error": "Rating must be between 1 and 5"}), 400
    notes = data.get("notes") or None
    if notes is not None and not isinstance(notes, str):
        return jsonify({"error": "Notes must be text"}), 400

    if db.session.get(User, user_id) is None:
        return jsonify({"error": "User not found"}), 404
    if db.session.get(Meditation, meditation_id) is None:
        return jsonify({"error": "Meditation not found"}), 404

    _, streak = record_session(user_id, meditation_id, duration_seconds,
                               today=streak_today(), rating=rating, notes=notes)
    return jsonify({
        "message": "Progress recorded",
        "streak": {
            "currentStreak": streak.current_streak,
            "longestStreak": streak.longest_streak,
        },
    })


@app.route("/api/v1/progress")
@token_required
def get_progress(user_id):
    streak = Streak.query.filter_by(user_id=user_id).first()
    entries = recent_entries(user_id, limit=30)
    return jsonify({
        "streak": streak.to_dict() if streak else None,
        "progress": [p.to_dict() for p in entries],
    })


@app.route("/api/v1/progress/history")
@token_required
def get_history(user_id):
    limit = request.args.get("limit", default=20, type=int)
    offset = request.args.get("offset", default=0, type=int)
    limit = min(max(limit, 1), 100)
    offset = min(max(offset, 0), MAX_DB_INT)
    entries = recent_entries(user_id, limit=limit, offset=offset)
    return jsonify({"history": [p.to_history_dict() for p in entries]})


@app.route("/api/v1/progress/stats")
@token_required
def get_stats(user_id):
    streak = Streak.query.filter_by(user_id=user_id).first()
    weekly_sessions, weekly_minutes = weekly_totals(user_id)
    return jsonify({
        "totalMinutes": streak.total_minutes if streak else 0,
        "totalSessions": streak.total_sessions if streak else 0,
        "currentStreak": streak.current_streak if streak else 0,
        "longestStreak": streak.longest_streak if streak else 0,
        "weeklyMinutes": weekly_minutes,
        "weeklySessions": weekly_sessions,
    })


# ── CLI ───────────────────────────────────────────────────────────────────────

@app.cli.command("init-db")
def init_db_command():
    """Create any missing tables."""
    db.create_all()
    click.echo("Database ready.")


@app.cli.command("seed-meditations")
@click.argument("path", required=False)
def seed_meditations_command(path):
    """Load the meditation catalog from PATH (default: meditations.json)."""
    added = seed_meditations(load_catalog(path))
    click.echo(f"Added {added} meditation(s).")


with app.app_context():
    db.create_all()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 9091)))
