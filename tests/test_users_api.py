from bson import ObjectId

from conftest import list_item, place_order


def test_public_profile_hides_contact_details(client, seller):
    list_item(client, seller)
    data = client.get(f"/api/users/{seller['id']}").json()["data"]

    assert data["user"]["name"] == "Sam Seller"
    assert "email" not in data["user"]
    assert "wishlist" not in data["user"]
    assert [i["title"] for i in data["items"]] == ["Desk lamp"]
    assert data["talentProducts"] == []


def test_unknown_or_deactivated_user_is_not_found(client, db, buyer):
    assert client.get(f"/api/users/{ObjectId()}").status_code == 404
    db["user"].update_one({"_id": ObjectId(buyer["id"])}, {"$set": {"isActive": False}})
    assert client.get(f"/api/users/{buyer['id']}").status_code == 404


def test_list_and_search_users(client, seller, buyer):
    data = client.get("/api/users").json()["data"]
    assert data["pagination"]["total"] == 2

    found = client.get("/api/users", params={"search": "sam"}).json()["data"]["users"]
    assert [u["id"] for u in found] == [seller["id"]]
    assert client.get("/api/users", params={"search": "["}).status_code == 200


def test_user_items_by_status(client, seller, buyer):
    reserved = list_item(client, seller, title="Kettle")
    list_item(client, seller, title="Fan")
    place_order(client, buyer, reserved)

    url = f"/api/users/{seller['id']}/items"
    assert [i["title"] for i in client.get(url).json()["data"]["items"]] == ["Fan"]
    assert client.get(url, params={"status": "all"}).json()["data"]["pagination"]["total"] == 2
    assert client.get(url, params={"status": "lost"}).status_code == 400


def test_dashboard(client, seller, buyer):
    item = list_item(client, seller)
    place_order(client, buyer, item)
    client.get(f"/api/items/{item['id']}", headers=buyer["headers"])

    data = client.get("/api/users/me/dashboard", headers=seller["headers"]).json()["data"]
    assert data["stats"]["activeItems"] == 0
    assert data["stats"]["totalViews"] == 1
    assert data["stats"]["orders"]["seller"]["totalOrders"] == 1
    assert len(data["recentSellerOrders"]) == 1
    assert data["recentBuyerOrders"] == []

    assert client.get("/api/users/me/dashboard").status_code == 401
