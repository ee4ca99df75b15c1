from typing import Dict, List

import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
from config import settings
from database import ensure_indexes, get_db
from main import app
from notifications import DispatchResult, get_notifier
from security import RevocationStore

USER_PASSWORD = "Secret@123"


class RecordingNotifier:
    """Stands in for EmailNotifier; records what would have been sent."""

    def __init__(self) -> None:
        self.sent: List[Dict] = []
        self.fail = False

    def _record(self, kind: str, booking: Dict) -> DispatchResult:
        if self.fail:
            return DispatchResult(sent=False, warning="Email provider error: unavailable")
        self.sent.append({"kind": kind, "to": booking["client_email"], "link": booking.get("review_link")})
        return DispatchResult(sent=True)

    def booking_confirmation(self, booking, home) -> DispatchResult:
        return self._record("booking_confirmation", booking)

    def review_link(self, booking, home) -> DispatchResult:
        return self._record("review_link", booking)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["homes_rental_test"]
    ensure_indexes(database)
    accounts.ensure_initial_admin(database, settings)
    return database


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.state.revocation_store = RevocationStore()
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token(client):
    res = client.post("/auth/login", json={"email": settings.admin_email, "password": settings.admin_password})
    assert res.status_code == 200
    return res.json()["token"]


@pytest.fixture
def make_user(client):
    def _make(username: str):
        email = f"{username}@example.com"
        res = client.post("/auth/signup", json={"username": username, "email": email, "password": USER_PASSWORD})
        assert res.status_code == 201
        user = res.json()["user"]
        login = client.post("/auth/login", json={"email": email, "password": USER_PASSWORD})
        return user, login.json()["token"]

    return _make


@pytest.fixture
def owner(make_user):
    return make_user("owner")


@pytest.fixture
def make_home(client, owner):
    def _make(token: str = None, **overrides):
        payload = {
            "name": "Lake House",
            "description": "Quiet place by the lake",
            "location": "Lake Tahoe, CA",
            "price": 100,
            "image_urls": ["https://img.example/1.jpg"],
            "max_guests": 4,
            "amenities": ["wifi", "parking"],
        }
        payload.update(overrides)
        res = client.post("/homes", json=payload, headers=auth_header(token or owner[1]))
        assert res.status_code == 201
        return res.json()["home"]

    return _make


@pytest.fixture
def booking_payload():
    def _payload(home_id: str, **overrides):
        payload = {
            "home_id": home_id,
            "client_name": "Jane Guest",
            "client_email": "jane@example.com",
            "client_phone": "+1 555 0100",
            "check_in": "2026-11-01",
            "check_out": "2026-11-04",
            "guests": 2,
        }
        payload.update(overrides)
        return payload

    return _payload
