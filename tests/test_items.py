from bson import ObjectId

from conftest import item_payload


def test_create_item_starts_pending_and_counts_listing(client, register, get_user):
    owner = register()
    res = client.post("/items", json=item_payload(), headers=owner.headers)
    assert res.status_code == 201
    item = res.json()["item"]
    assert item["status"] == "pending"
    assert item["availability"] == "Pending"
    assert item["is_approved"] is False
    assert item["uploader_id"] == owner.id
    assert get_user(owner)["items_listed"] == 1


def test_create_item_requires_auth_and_images(client, register):
    assert client.post("/items", json=item_payload()).status_code == 401
    owner = register()
    res = client.post("/items", json=item_payload(images=[]), headers=owner.headers)
    assert res.status_code == 400
    res = client.post("/items", json=item_payload(size="ZZ"), headers=owner.headers)
    assert res.status_code == 400


def test_listing_shows_only_available_and_approved(client, register, list_item, db):
    owner = register()
    visible = list_item(owner, title="Approved coat")
    list_item(owner, approve=False, title="Unapproved coat")
    hidden = list_item(owner, title="Removed coat")
    db["item"].update_one({"_id": ObjectId(hidden)}, {"$set": {"status": "removed"}})

    res = client.get("/items")
    assert res.status_code == 200
    body = res.json()
    assert [i["id"] for i in body["items"]] == [visible]
    assert body["pagination"]["total_items"] == 1
    assert body["items"][0]["uploader"]["first_name"] == "Alex"


def test_listing_filters_and_sorts(client, register, list_item):
    owner = register()
    cheap = list_item(owner, title="Linen shirt", category="Tops", points=20, tags=["summer"])
    mid = list_item(owner, title="Wool coat", points=150, brand="Acme")
    dear = list_item(owner, title="Silk dress", category="Dresses", points=400)

    res = client.get("/items", params={"sort": "points_high"})
    assert [i["id"] for i in res.json()["items"]] == [dear, mid, cheap]

    res = client.get("/items", params={"min_points": 100, "max_points": 200})
    assert [i["id"] for i in res.json()["items"]] == [mid]

    res = client.get("/items", params={"category": "Tops"})
    assert [i["id"] for i in res.json()["items"]] == [cheap]

    res = client.get("/items", params={"search": "SUMMER"})
    assert [i["id"] for i in res.json()["items"]] == [cheap]

    res = client.get("/items", params={"search": "acme"})
    assert [i["id"] for i in res.json()["items"]] == [mid]

    res = client.get("/items", params={"sort": "points_low", "limit": 2, "page": 2})
    body = res.json()
    assert [i["id"] for i in body["items"]] == [dear]
    assert body["pagination"]["total_pages"] == 2


def test_listing_rejects_bad_query(client):
    assert client.get("/items", params={"limit": 500}).status_code == 400
    assert client.get("/items", params={"sort": "random"}).status_code == 400


def test_get_item_counts_views_for_signed_in_users(client, register, list_item):
    owner, viewer = register(), register("Bea")
    item_id = list_item(owner)
    assert client.get(f"/items/{item_id}").json()["item"]["views"] == 0
    assert client.get(f"/items/{item_id}", headers=viewer.headers).json()["item"]["views"] == 1


def test_get_item_treats_bad_token_as_anonymous(client, register, list_item):
    item_id = list_item(register())
    res = client.get(f"/items/{item_id}", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 200
    assert res.json()["item"]["views"] == 0
    assert client.post(f"/items/{item_id}/like", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_get_missing_and_invalid_item(client):
    assert client.get(f"/items/{ObjectId()}").status_code == 404
    assert client.get("/items/not-an-id").status_code == 400


def test_only_owner_can_update_or_delete(client, register, list_item, db):
    owner, other = register(), register("Bea")
    item_id = list_item(owner)

    res = client.put(f"/items/{item_id}", json={"points": 250}, headers=other.headers)
    assert res.status_code == 403
    res = client.put(f"/items/{item_id}", json={"points": 250, "title": "Cropped denim jacket"}, headers=owner.headers)
    assert res.status_code == 200
    assert res.json()["item"]["points"] == 250

    assert client.delete(f"/items/{item_id}", headers=other.headers).status_code == 403
    assert client.delete(f"/items/{item_id}", headers=owner.headers).status_code == 200
    assert db["item"].count_documents({}) == 0


def test_like_toggles(client, register, list_item):
    owner, fan = register(), register("Bea")
    item_id = list_item(owner)
    first = client.post(f"/items/{item_id}/like", headers=fan.headers).json()
    assert first == {"likes": 1, "is_liked": True}
    second = client.post(f"/items/{item_id}/like", headers=fan.headers).json()
    assert second == {"likes": 0, "is_liked": False}


def test_swap_request_on_own_item_rejected(client, register, list_item):
    owner = register()
    item_id = list_item(owner)
    res = client.post(f"/items/{item_id}/swap-request", json={"message": "mine"}, headers=owner.headers)
    assert res.status_code == 400
    assert res.json()["detail"] == "Cannot request swap for your own item"


def test_duplicate_pending_swap_request_rejected(client, register, list_item):
    owner, other = register(), register("Bea")
    item_id = list_item(owner)
    assert client.post(f"/items/{item_id}/swap-request", json={}, headers=other.headers).status_code == 200
    res = client.post(f"/items/{item_id}/swap-request", json={}, headers=other.headers)
    assert res.status_code == 400
    item = client.get(f"/items/{item_id}").json()["item"]
    assert item["pending_swap_requests"] == 1


def test_admin_approval(client, register, list_item, db):
    owner, admin = register(), register("Root")
    db["user"].update_one({"_id": ObjectId(admin.id)}, {"$set": {"is_admin": True}})
    item_id = list_item(owner, approve=False)

    assert client.put(f"/items/{item_id}/approve", headers=owner.headers).status_code == 403
    res = client.put(f"/items/{item_id}/approve", headers=admin.headers)
    assert res.status_code == 200
    item = res.json()["item"]
    assert item["status"] == "available"
    assert item["is_approved"] is True
    assert [i["id"] for i in client.get("/items").json()["items"]] == [item_id]


def test_trending_and_category(client, register, list_item, db):
    owner = register()
    quiet = list_item(owner, category="Shoes")
    busy = list_item(owner, category="Shoes")
    db["item"].update_one({"_id": ObjectId(busy)}, {"$set": {"views": 30}})

    trending = client.get("/items/trending").json()["items"]
    assert [i["id"] for i in trending] == [busy, quiet]
    shoes = client.get("/items/category/Shoes").json()["items"]
    assert {i["id"] for i in shoes} == {busy, quiet}
    assert client.get("/items/category/Dresses").json()["items"] == []
