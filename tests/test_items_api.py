from bson import ObjectId

from conftest import list_item, place_order, register


def test_create_and_list_items(client, seller):
    list_item(client, seller, price=200, title="Cricket bat")
    list_item(client, seller, price=900, title="Study chair")

    data = client.get("/api/items?sortBy=price&sortOrder=asc").json()["data"]
    assert [i["title"] for i in data["items"]] == ["Cricket bat", "Study chair"]
    assert data["pagination"]["total"] == 2

    found = client.get("/api/items?q=chair").json()["data"]["items"]
    assert len(found) == 1


def test_original_price_below_price_is_rejected(client, seller):
    r = client.post("/api/items", json={
        "title": "Kettle", "description": "1L", "price": 500, "originalPrice": 300,
        "category": "Hostel", "condition": "Good",
    }, headers=seller["headers"])
    assert r.status_code == 400


def test_missing_fields_use_error_envelope(client, seller):
    r = client.post("/api/items", json={"title": "Kettle"}, headers=seller["headers"])
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"


def test_requires_token(client):
    r = client.post("/api/items", json={})
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_view_counter_skips_owner(client, seller, buyer):
    item = list_item(client, seller)
    client.get(f"/api/items/{item['id']}", headers=seller["headers"])
    r = client.get(f"/api/items/{item['id']}", headers=buyer["headers"])
    assert r.json()["data"]["item"]["views"] == 1


def test_only_owner_can_update(client, seller, buyer):
    item = list_item(client, seller)
    assert client.put(f"/api/items/{item['id']}", json={"price": 1}, headers=buyer["headers"]).status_code == 403
    r = client.put(f"/api/items/{item['id']}", json={"price": 800}, headers=seller["headers"])
    assert r.json()["data"]["item"]["price"] == 800


def test_like_toggle(client, seller, buyer):
    item = list_item(client, seller)
    url = f"/api/items/{item['id']}/like"
    assert client.post(url, headers=buyer["headers"]).json()["data"] == {"isLiked": True, "likeCount": 1}
    assert client.post(url, headers=buyer["headers"]).json()["data"] == {"isLiked": False, "likeCount": 0}


def test_duplicate_report_is_rejected(client, db, seller, buyer):
    item = list_item(client, seller)
    url = f"/api/items/{item['id']}/report"

    assert client.post(url, json={"reason": "spam"}, headers=buyer["headers"]).status_code == 200
    r = client.post(url, json={"reason": "fake"}, headers=buyer["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "You have already reported this item"
    assert len(db["item"].find_one({"_id": ObjectId(item["id"])})["reports"]) == 1


def test_reserved_item_cannot_be_deleted_or_reset(client, seller, buyer):
    item = list_item(client, seller)
    place_order(client, buyer, item)

    assert client.delete(f"/api/items/{item['id']}", headers=seller["headers"]).status_code == 400
    r = client.put(f"/api/items/{item['id']}/status", json={"status": "available"}, headers=seller["headers"])
    assert r.status_code == 400


def test_delete_item(client, db, seller):
    item = list_item(client, seller)
    assert client.delete(f"/api/items/{item['id']}", headers=seller["headers"]).status_code == 200
    assert db["item"].count_documents({}) == 0


def test_invalid_id(client):
    r = client.get("/api/items/not-an-id")
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid id"


def test_deactivated_user_is_locked_out(client, db):
    user = register(client, "Lee Locked", "locked@campus.edu")
    db["user"].update_one({"_id": ObjectId(user["id"])}, {"$set": {"isActive": False}})
    assert client.get("/api/auth/profile", headers=user["headers"]).status_code == 401
