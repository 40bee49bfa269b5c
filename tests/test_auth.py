from bson import ObjectId


def test_register_grants_welcome_points(client):
    res = client.post("/auth/register", json={
        "first_name": "Sam",
        "last_name": "Lee",
        "email": "Sam@Example.com",
        "password": "secret123",
    })
    assert res.status_code == 201
    body = res.json()
    assert body["token_type"] == "bearer"
    user = body["user"]
    assert user["email"] == "sam@example.com"
    assert user["points"] == 10
    assert user["level"] == "Bronze Swapper"
    assert "password_hash" not in user


def test_register_rejects_duplicate_email(client, register):
    account = register()
    res = client.post("/auth/register", json={
        "first_name": "Other",
        "last_name": "Person",
        "email": account.email,
        "password": "secret123",
    })
    assert res.status_code == 400
    assert res.json()["detail"] == "Email already registered"


def test_register_validation_returns_field_errors(client):
    res = client.post("/auth/register", json={"first_name": "A", "last_name": "B", "email": "nope", "password": "123"})
    assert res.status_code == 400
    body = res.json()
    assert body["detail"] == "Validation failed"
    fields = {e["field"] for e in body["errors"]}
    assert {"email", "password"} <= fields


def test_login_and_me(client, register):
    account = register()
    res = client.post("/auth/login", json={"email": account.email, "password": "secret123"})
    assert res.status_code == 200
    token = res.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["id"] == account.id


def test_login_wrong_password(client, register):
    account = register()
    res = client.post("/auth/login", json={"email": account.email, "password": "wrong-pass"})
    assert res.status_code == 400


def test_me_requires_bearer_token(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_deactivated_user_token_rejected(client, register, db):
    account = register()
    db["user"].update_one({"_id": ObjectId(account.id)}, {"$set": {"is_active": False}})
    assert client.get("/auth/me", headers=account.headers).status_code == 401


def test_update_profile_and_change_password(client, register):
    account = register()
    res = client.put("/auth/profile", json={"location": "Lisbon", "bio": "Thrift fan"}, headers=account.headers)
    assert res.status_code == 200
    assert res.json()["user"]["location"] == "Lisbon"

    bad = client.put("/auth/change-password", json={"current_password": "nope", "new_password": "newsecret"}, headers=account.headers)
    assert bad.status_code == 400

    ok = client.put("/auth/change-password", json={"current_password": "secret123", "new_password": "newsecret"}, headers=account.headers)
    assert ok.status_code == 200
    login = client.post("/auth/login", json={"email": account.email, "password": "newsecret"})
    assert login.status_code == 200


def test_diagnostics_reports_collections(client, register, db):
    from database import get_optional_db
    from main import app

    register()
    assert client.get("/test").json()["database"] == "not configured"

    app.dependency_overrides[get_optional_db] = lambda: db
    body = client.get("/test").json()
    assert body["database"] == "connected"
    assert body["collections"] == {"user": 1, "item": None, "swap": None}
