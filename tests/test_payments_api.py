from bson import ObjectId

from conftest import list_item, pay_order, place_order, register, set_status, sign


def _open_gateway_order(client, buyer, order):
    r = client.post("/api/payments/create-order", json={"orderId": order["id"]}, headers=buyer["headers"])
    assert r.status_code == 200, r.text
    return r.json()["data"]


def test_create_gateway_order_amount_in_paise(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller, price=1000))
    data = _open_gateway_order(client, buyer, order)

    assert data["amount"] == 100000
    assert data["currency"] == "INR"
    payment = db["payment"].find_one({"paymentId": data["paymentId"]})
    assert payment["status"] == "pending"
    assert payment["platformCommission"] == 30
    assert payment["sellerAmount"] == 970


def test_only_buyer_can_open_gateway_order(client, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    r = client.post("/api/payments/create-order", json={"orderId": order["id"]}, headers=seller["headers"])
    assert r.status_code == 403


def test_verify_moves_order_to_paid_with_escrow_held(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)

    payment = db["payment"].find_one({"paymentId": payment_id})
    assert payment["status"] == "completed"
    assert payment["escrowStatus"] == "held"
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "paid"


def test_bad_signature_changes_nothing(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    data = _open_gateway_order(client, buyer, order)

    r = client.post("/api/payments/verify", json={
        "orderId": order["id"],
        "razorpay_order_id": data["razorpayOrderId"],
        "razorpay_payment_id": "pay_forged",
        "razorpay_signature": "0" * 64,
    }, headers=buyer["headers"])

    assert r.status_code == 400
    assert r.json()["success"] is False
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "pending"
    assert db["payment"].find_one({"paymentId": data["paymentId"]})["status"] == "pending"


def test_signature_for_another_gateway_order_is_rejected(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    _open_gateway_order(client, buyer, order)

    r = client.post("/api/payments/verify", json={
        "orderId": order["id"],
        "razorpay_order_id": "order_someone_else",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": sign("order_someone_else", "pay_1"),
    }, headers=buyer["headers"])
    assert r.status_code == 400
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "pending"


def test_upi_payment_recorded(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller), payment_method="upi")
    r = client.post("/api/payments/upi-upload", json={"orderId": order["id"], "transactionId": "UPI123"},
                    headers=buyer["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["order"]["status"] == "paid"
    assert db["payment"].find_one({"order": ObjectId(order["id"])})["gateway"] == "upi"


def test_confirm_delivery_is_buyer_only_and_once(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)
    set_status(client, seller, order, "delivered")

    assert client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=seller["headers"]).status_code == 403

    r = client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=buyer["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["payment"]["escrowStatus"] == "released"
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "completed"

    again = client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=buyer["headers"])
    assert again.status_code == 400


def test_signature_is_not_exposed(client, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)
    payment = client.get(f"/api/payments/{payment_id}", headers=seller["headers"]).json()["data"]["payment"]
    assert "gatewaySignature" not in payment
    assert payment["gatewayPaymentId"] == "pay_test_1"


def test_outsider_cannot_view_payment(client, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)
    other = register(client, "Otto Other", "other@campus.edu")
    assert client.get(f"/api/payments/{payment_id}", headers=other["headers"]).status_code == 403


def test_dispute_and_resolution(client, db, seller, buyer, admin):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)

    r = client.post(f"/api/payments/{payment_id}/dispute", json={"reason": "Item not as described"},
                    headers=buyer["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["payment"]["status"] == "disputed"

    again = client.post(f"/api/payments/{payment_id}/dispute", json={"reason": "again"}, headers=seller["headers"])
    assert again.status_code == 400

    r = client.post(f"/api/admin/payments/{payment_id}/resolve-dispute", json={"resolution": "Seller sent photos"},
                    headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["payment"]["status"] == "completed"


def test_admin_refund(client, db, seller, buyer, admin):
    item = list_item(client, seller)
    order = place_order(client, buyer, item)
    payment_id = pay_order(client, buyer, order)

    r = client.post(f"/api/payments/{payment_id}/refund", json={"reason": "Buyer request"}, headers=buyer["headers"])
    assert r.status_code == 403

    r = client.post(f"/api/payments/{payment_id}/refund", json={"reason": "Buyer request", "amount": 5000},
                    headers=admin["headers"])
    assert r.status_code == 400

    r = client.post(f"/api/payments/{payment_id}/refund", json={"reason": "Buyer request"}, headers=admin["headers"])
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["payment"]["status"] == "refunded"
    assert data["payment"]["escrowStatus"] == "refunded"
    assert data["payment"]["refundAmount"] == 1000
    assert data["refund"]["id"].startswith("rfnd_dev_")
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "refunded"
    assert db["item"].find_one({"_id": ObjectId(item["id"])})["availability"]["status"] == "available"


def test_seller_refund_settles_escrow(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)

    assert set_status(client, seller, order, "refunded").status_code == 200
    payment = db["payment"].find_one({"paymentId": payment_id})
    assert payment["status"] == "refunded"
    assert payment["escrowStatus"] == "refunded"


def test_receipt_and_earnings(client, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)

    receipt = client.get(f"/api/payments/{payment_id}/receipt", headers=buyer["headers"]).json()["data"]["receipt"]
    assert receipt["receiptId"] == f"RCP_{payment_id}"
    assert receipt["commission"] == 30

    earnings = client.get("/api/payments/earnings", headers=seller["headers"]).json()["data"]["earnings"]
    assert earnings["pending"] == {"pendingAmount": 970, "pendingOrders": 1}
    assert earnings["earnings"]["totalEarnings"] == 0


def test_confirm_delivery_needs_delivered_order(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)

    r = client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=buyer["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Order must be delivered before confirming delivery"
    assert db["payment"].find_one({"paymentId": payment_id})["escrowStatus"] == "held"


def test_cancelled_paid_order_freezes_escrow_until_refund(client, db, seller, buyer, admin):
    item = list_item(client, seller)
    order = place_order(client, buyer, item)
    payment_id = pay_order(client, buyer, order)

    assert set_status(client, seller, order, "cancelled").status_code == 200
    assert db["payment"].find_one({"paymentId": payment_id})["escrowStatus"] == "frozen"
    assert db["item"].find_one({"_id": ObjectId(item["id"])})["availability"]["status"] == "available"

    r = client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=buyer["headers"])
    assert r.status_code == 400
    assert db["payment"].find_one({"paymentId": payment_id})["escrowStatus"] == "frozen"

    r = client.post(f"/api/payments/{payment_id}/refund", json={"reason": "Order cancelled"}, headers=admin["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["payment"]["escrowStatus"] == "refunded"
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "refunded"


def test_escrow_stays_held_when_completion_fails(client, db, seller, buyer):
    item = list_item(client, seller)
    order = place_order(client, buyer, item)
    payment_id = pay_order(client, buyer, order)
    set_status(client, seller, order, "delivered")
    db["item"].update_one({"_id": ObjectId(item["id"])}, {"$set": {"availability.status": "available"}})

    r = client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=buyer["headers"])
    assert r.status_code == 409
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "delivered"
    payment = db["payment"].find_one({"paymentId": payment_id})
    assert payment["escrowStatus"] == "held"
    assert payment["deliveryConfirmed"] is False
    assert "deliveryConfirmedAt" not in payment


def test_completing_through_orders_route_releases_escrow(client, db, seller, buyer):
    order = place_order(client, buyer, list_item(client, seller))
    payment_id = pay_order(client, buyer, order)
    set_status(client, seller, order, "delivered")

    assert set_status(client, buyer, order, "completed").status_code == 200
    payment = db["payment"].find_one({"paymentId": payment_id})
    assert payment["escrowStatus"] == "released"
    assert client.post(f"/api/payments/{payment_id}/confirm-delivery", headers=buyer["headers"]).status_code == 400
