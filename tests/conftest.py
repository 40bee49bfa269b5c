import os

# Must be set before the application modules read their configuration
os.environ["DATABASE_URL"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["USE_TRANSACTIONS"] = "false"

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import get_db
from ledger import level_for_points
from main import app


@pytest.fixture
def db():
    return mongomock.MongoClient().rewear_test


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


class Account:
    def __init__(self, id, token, email):
        self.id = id
        self.token = token
        self.email = email

    @property
    def headers(self):
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture
def register(client):
    counter = {"n": 0}

    def _register(first_name="Alex", last_name="Doe", password="secret123"):
        counter["n"] += 1
        email = f"{first_name.lower()}{counter['n']}@example.com"
        res = client.post("/auth/register", json={
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "password": password,
        })
        assert res.status_code == 201, res.text
        body = res.json()
        return Account(body["user"]["id"], body["access_token"], email)

    return _register


@pytest.fixture
def set_points(db):
    def _set(account, points):
        db["user"].update_one(
            {"_id": ObjectId(account.id)},
            {"$set": {"points": points, "level": level_for_points(points)}},
        )
    return _set


@pytest.fixture
def get_user(db):
    def _get(account):
        return db["user"].find_one({"_id": ObjectId(account.id)})
    return _get


def item_payload(**overrides):
    payload = {
        "title": "Vintage denim jacket",
        "description": "Light wash denim jacket, barely worn.",
        "category": "Outerwear",
        "size": "M",
        "condition": "Like new",
        "points": 100,
        "tags": ["denim", "vintage"],
        "images": ["https://img.example.com/jacket.jpg"],
        "brand": "Levi's",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def list_item(client, db):
    """Create an item through the API and approve it so it is swappable."""
    def _list(account, approve=True, **overrides):
        res = client.post("/items", json=item_payload(**overrides), headers=account.headers)
        assert res.status_code == 201, res.text
        item_id = res.json()["item"]["id"]
        if approve:
            db["item"].update_one(
                {"_id": ObjectId(item_id)},
                {"$set": {"status": "available", "is_approved": True}},
            )
        return item_id
    return _list
