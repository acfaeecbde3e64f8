"""Python client for the Mindful Moment API.

Mirrors the calls the mobile app's store makes, so scripts and tests can drive
the service the same way the app does::

    api = MindfulClient("http://localhost:9091")
    api.login("me@example.com", "secret")
    api.record_session(meditation_id=3, duration_seconds=600, rating=5)
    print(api.stats()["currentStreak"])
"""
import requests

API_PREFIX = "/api/v1"


class ApiError(Exception):
    """A non-2xx response. ``message`` is the server's ``error`` field."""

    def __init__(self, status, message):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


class MindfulClient:
    def __init__(self, base_url, session=None, token=None, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token = token
        self.timeout = timeout

    def _request(self, method, path, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.session.request(method, self.base_url + API_PREFIX + path,
                                        headers=headers, timeout=self.timeout, **kwargs)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.ok:
            raise ApiError(response.status_code, data.get("error") or response.reason)
        return data

    # ── Auth ──────────────────────────────────────────────────────────────────

    def register(self, email, password, display_name=None):
        data = self._request("POST", "/auth/register",
                             json={"email": email, "password": password, "displayName": display_name})
        self.token = data["token"]
        return data["user"]

    def login(self, email, password):
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data["user"]

    def logout(self):
        self.token = None

    def me(self):
        return self._request("GET", "/auth/me")["user"]

    # ── Catalog ───────────────────────────────────────────────────────────────

    def list_meditations(self, category=None, duration=None, featured=False):
        params = {}
        if category:
            params["category"] = category
        if duration:
            params["duration"] = duration
        if featured:
            params["featured"] = "true"
        return self._request("GET", "/meditations", params=params)["meditations"]

    def categories(self):
        return self._request("GET", "/meditations/categories")["categories"]

    def get_meditation(self, meditation_id):
        return self._request("GET", f"/meditations/{meditation_id}")["meditation"]

    def play(self, meditation_id):
        return self._request("POST", f"/meditations/{meditation_id}/play")

    # ── Progress ──────────────────────────────────────────────────────────────

    def record_session(self, meditation_id, duration_seconds, rating=None, notes=None):
        """Record a finished session; returns ``{currentStreak, longestStreak}``."""
        payload = {"meditationId": meditation_id, "durationSeconds": duration_seconds}
        if rating is not None:
            payload["rating"] = rating
        if notes:
            payload["notes"] = notes
        return self._request("POST", "/progress", json=payload)["streak"]

    def stats(self):
        return self._request("GET", "/progress/stats")

    def history(self, limit=None, offset=None):
        params = {}
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset
        return self._request("GET", "/progress/history", params=params)["history"]
