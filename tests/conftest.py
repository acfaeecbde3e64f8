import os

# Must be set before app.py is imported: it reads config at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["DB_TIMEOUT_SECONDS"] = "5"

from datetime import datetime

import pytest

from app import app as flask_app
from models import db, Meditation


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, email="calm@example.com", password="breathe-in", display_name="Calm"):
    resp = client.post("/api/v1/auth/register",
                       json={"email": email, "password": password, "displayName": display_name})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token(client):
    return register(client)["token"]


@pytest.fixture
def catalog(app):
    """Three meditations created a day apart, oldest first."""
    items = [
        Meditation(title="Morning Breath", duration_minutes=5, category="breathing",
                   audio_url="https://cdn.example.com/a.mp3", is_featured=True,
                   created_at=datetime(2024, 1, 1)),
        Meditation(title="Body Scan", duration_minutes=20, category="sleep",
                   audio_url="https://cdn.example.com/b.mp3",
                   created_at=datetime(2024, 1, 2)),
        Meditation(title="Focus Reset", duration_minutes=5, category="focus",
                   audio_url="https://cdn.example.com/c.mp3", is_featured=True,
                   created_at=datetime(2024, 1, 3)),
    ]
    db.session.add_all(items)
    db.session.commit()
    return [m.id for m in items]
