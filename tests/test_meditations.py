import json

from sqlalchemy import event

from app import seed_meditations, load_catalog
from models import db, Meditation


def titles(resp):
    return [m["title"] for m in resp.get_json()["meditations"]]


def test_list_is_newest_first(client, catalog):
    resp = client.get("/api/v1/meditations")
    assert resp.status_code == 200
    assert titles(resp) == ["Focus Reset", "Body Scan", "Morning Breath"]


def test_list_item_shape(client, catalog):
    item = client.get("/api/v1/meditations").get_json()["meditations"][-1]
    assert item["durationMinutes"] == 5
    assert item["audioUrl"] == "https://cdn.example.com/a.mp3"
    assert item["isFeatured"] is True
    assert item["playCount"] == 0
    assert item["difficulty"] == "beginner"


def test_filter_by_category(client, catalog):
    assert titles(client.get("/api/v1/meditations?category=sleep")) == ["Body Scan"]


def test_filter_by_exact_duration(client, catalog):
    assert titles(client.get("/api/v1/meditations?duration=5")) == ["Focus Reset", "Morning Breath"]
    assert titles(client.get("/api/v1/meditations?duration=7")) == []


def test_filter_by_bad_duration(client, catalog):
    assert client.get("/api/v1/meditations?duration=ten").status_code == 400


def test_filter_featured_only_when_true(client, catalog):
    assert titles(client.get("/api/v1/meditations?featured=true")) == ["Focus Reset", "Morning Breath"]
    assert len(titles(client.get("/api/v1/meditations?featured=false"))) == 3


def test_combined_filters(client, catalog):
    resp = client.get("/api/v1/meditations?category=focus&duration=5&featured=true")
    assert titles(resp) == ["Focus Reset"]


def test_categories_are_distinct(client, catalog):
    db.session.add(Meditation(title="Deep Sleep", duration_minutes=30, category="sleep",
                              audio_url="https://cdn.example.com/d.mp3"))
    db.session.commit()
    resp = client.get("/api/v1/meditations/categories")
    assert resp.get_json() == {"categories": ["breathing", "focus", "sleep"]}


def test_get_single(client, catalog):
    resp = client.get(f"/api/v1/meditations/{catalog[1]}")
    assert resp.status_code == 200
    assert resp.get_json()["meditation"]["title"] == "Body Scan"


def test_get_missing(client, catalog):
    resp = client.get("/api/v1/meditations/9999")
    assert resp.status_code == 404
    assert resp.get_json() == {"error": "Meditation not found"}


def test_play_increments_count(client, catalog):
    mid = catalog[0]
    for _ in range(3):
        resp = client.post(f"/api/v1/meditations/{mid}/play")
        assert resp.get_json() == {"message": "Play count updated"}
    assert db.session.get(Meditation, mid).play_count == 3
    assert db.session.get(Meditation, catalog[1]).play_count == 0


def test_play_missing(client, catalog):
    assert client.post("/api/v1/meditations/9999/play").status_code == 404


def test_unknown_route_is_json(client):
    resp = client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert "error" in resp.get_json()


def test_health_and_cors(client):
    resp = client.get("/api/v1/health")
    assert resp.get_json() == {"status": "ok"}
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_seed_skips_existing_titles(app, catalog, tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([
        {"title": "Body Scan", "duration_minutes": 20, "category": "sleep",
         "audio_url": "https://cdn.example.com/b.mp3"},
        {"title": "Walking", "duration_minutes": 15, "category": "movement",
         "audio_url": "https://cdn.example.com/w.mp3", "unknown_field": "ignored"},
    ]), encoding="utf-8")
    assert seed_meditations(load_catalog(str(path))) == 1
    assert Meditation.query.count() == 4
    assert Meditation.query.filter_by(title="Walking").one().category == "movement"


def test_bundled_catalog_seeds(app):
    added = seed_meditations(load_catalog())
    assert added == Meditation.query.count() > 0
    assert seed_meditations(load_catalog()) == 0


def test_filter_by_out_of_range_duration(client, catalog):
    assert client.get(f"/api/v1/meditations?duration={10**30}").status_code == 400
    assert client.get("/api/v1/meditations?duration=-5").status_code == 400


def test_play_is_a_single_update_statement(app, client, catalog):
    statements = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        statements.append(" ".join(statement.split()).upper())

    event.listen(db.engine, "before_cursor_execute", capture)
    try:
        assert client.post(f"/api/v1/meditations/{catalog[0]}/play").status_code == 200
    finally:
        event.remove(db.engine, "before_cursor_execute", capture)

    touching = [s for s in statements if "MEDITATIONS" in s]
    assert len(touching) == 1
    assert touching[0].startswith("UPDATE MEDITATIONS SET PLAY_COUNT=")
    assert "MEDITATIONS.PLAY_COUNT +" in touching[0]
