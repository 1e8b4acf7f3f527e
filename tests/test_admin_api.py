from datetime import timedelta

from bson import ObjectId

from database import now_utc
from conftest import list_item, pay_order, place_order, set_status


def test_registration_grants_admin_from_allow_list(admin, buyer, client):
    assert client.get("/api/auth/profile", headers=admin["headers"]).json()["data"]["user"]["role"] == "admin"
    assert client.get("/api/auth/profile", headers=buyer["headers"]).json()["data"]["user"]["role"] == "user"


def test_admin_routes_require_admin(client, buyer):
    r = client.get("/api/admin/dashboard", headers=buyer["headers"])
    assert r.status_code == 403
    assert r.json()["message"] == "Admin access required"


def test_dashboard_totals(client, seller, buyer, admin):
    order = place_order(client, buyer, list_item(client, seller))
    pay_order(client, buyer, order)

    stats = client.get("/api/admin/dashboard", headers=admin["headers"]).json()["data"]["stats"]
    assert stats["users"]["total"] == 3
    assert stats["orders"]["total"] == 1
    assert stats["payments"]["heldInEscrow"] == 1000


def test_deactivate_user_but_not_self(client, db, admin, buyer):
    assert client.put(f"/api/admin/users/{admin['id']}/status", json={"isActive": False},
                      headers=admin["headers"]).status_code == 400

    r = client.put(f"/api/admin/users/{buyer['id']}/status", json={"isActive": False}, headers=admin["headers"])
    assert r.status_code == 200
    assert client.get("/api/auth/profile", headers=buyer["headers"]).status_code == 401


def test_resolve_reports_removes_item(client, db, seller, buyer, admin):
    item = list_item(client, seller)
    client.post(f"/api/items/{item['id']}/report", json={"reason": "fake"}, headers=buyer["headers"])

    r = client.post(f"/api/admin/items/{item['id']}/resolve-reports", json={"action": "remove"},
                    headers=admin["headers"])
    assert r.status_code == 200
    stored = db["item"].find_one({"_id": ObjectId(item["id"])})
    assert stored["reports"] == []
    assert stored["isActive"] is False


def test_commission_batch_lifecycle(client, seller, buyer, admin):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)
    set_status(client, seller, order, "delivered")
    client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=buyer["headers"])

    now = now_utc()
    body = {"year": now.year, "month": now.month}
    r = client.post("/api/admin/commissions", json=body, headers=admin["headers"])
    assert r.status_code == 201
    batch = r.json()["data"]["commission"]
    assert batch["totalCommission"] == 30
    assert batch["categoryBreakdown"] == [{"category": "Hostel", "commission": 30, "transactions": 1, "volume": 1000}]

    dup = client.post("/api/admin/commissions", json=body, headers=admin["headers"])
    assert dup.status_code == 400
    assert dup.json()["message"] == "Commission for this month already exists"

    url = f"/api/admin/commissions/{batch['batchId']}"
    assert client.put(f"{url}/paid", headers=admin["headers"]).status_code == 400
    assert client.put(f"{url}/processed", headers=admin["headers"]).status_code == 200
    assert client.put(f"{url}/paid", headers=admin["headers"]).json()["data"]["commission"]["status"] == "paid"
    assert client.put("/api/admin/commissions/COMM_X/processed", headers=admin["headers"]).status_code == 404


def test_seed_is_idempotent(client, db, admin):
    assert client.post("/api/admin/seed", headers=admin["headers"]).status_code == 200
    count = db["item"].count_documents({})
    client.post("/api/admin/seed", headers=admin["headers"])
    assert db["item"].count_documents({}) == count > 0


def test_user_search_is_literal(client, admin, buyer):
    r = client.get("/api/admin/users", params={"q": "("}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["users"] == []

    found = client.get("/api/admin/users", params={"q": "Bea"}, headers=admin["headers"]).json()["data"]["users"]
    assert [u["id"] for u in found] == [buyer["id"]]


def test_disputes_listed_oldest_first(client, db, seller, buyer, admin):
    first = pay_order(client, buyer, place_order(client, buyer, list_item(client, seller, title="Kettle")))
    second = pay_order(client, buyer, place_order(client, buyer, list_item(client, seller, title="Fan")))
    for payment_id in (first, second):
        client.post(f"/api/payments/{payment_id}/dispute", json={"reason": "Damaged"}, headers=buyer["headers"])
    db["payment"].update_one({"paymentId": first}, {"$set": {"disputeRaisedAt": now_utc() + timedelta(hours=1)}})

    payments = client.get("/api/admin/disputes", headers=admin["headers"]).json()["data"]["payments"]
    assert [p["paymentId"] for p in payments] == [second, first]
