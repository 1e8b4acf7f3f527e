import hashlib
import hmac
import os

os.environ["RAZORPAY_KEY_SECRET"] = "test_secret"
os.environ["RAZORPAY_KEY_ID"] = ""
os.environ["ADMIN_EMAILS"] = "admin@campus.edu"
os.environ["COMMISSION_RATE"] = "3"
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import database

database.db = mongomock.MongoClient()["campus_market_test"]

from main import app  # noqa: E402

SECRET = os.environ["RAZORPAY_KEY_SECRET"]


def sign(gateway_order_id, gateway_payment_id):
    msg = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(SECRET.encode(), msg, hashlib.sha256).hexdigest()


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    database.ensure_indexes()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    return database.db


def register(client, name, email, password="secret123"):
    r = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    return {"id": data["user"]["id"], "token": data["token"], "headers": {"Authorization": f"Bearer {data['token']}"}}


@pytest.fixture
def seller(client):
    return register(client, "Sam Seller", "seller@campus.edu")


@pytest.fixture
def buyer(client):
    return register(client, "Bea Buyer", "buyer@campus.edu")


@pytest.fixture
def admin(client):
    return register(client, "Ada Admin", "admin@campus.edu")


def list_item(client, owner, price=1000, title="Desk lamp"):
    r = client.post("/api/items", json={
        "title": title,
        "description": "Barely used",
        "price": price,
        "category": "Hostel",
        "condition": "Good",
    }, headers=owner["headers"])
    assert r.status_code == 201, r.text
    return r.json()["data"]["item"]


def place_order(client, buyer, item, payment_method="razorpay"):
    r = client.post("/api/orders", json={
        "type": "item",
        "item": item["id"],
        "paymentMethod": payment_method,
    }, headers=buyer["headers"])
    assert r.status_code == 201, r.text
    return r.json()["data"]["order"]


def pay_order(client, buyer, order):
    r = client.post("/api/payments/create-order", json={"orderId": order["id"]}, headers=buyer["headers"])
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    r = client.post("/api/payments/verify", json={
        "orderId": order["id"],
        "razorpay_order_id": data["razorpayOrderId"],
        "razorpay_payment_id": "pay_test_1",
        "razorpay_signature": sign(data["razorpayOrderId"], "pay_test_1"),
    }, headers=buyer["headers"])
    assert r.status_code == 200, r.text
    return data["paymentId"]


def set_status(client, who, order, status):
    return client.put(f"/api/orders/{order['id']}/status", json={"status": status}, headers=who["headers"])
